import unittest
from datetime import datetime, UTC
from decimal import Decimal

from dutch_auction.auction.domain.auction_status import EndReason
from dutch_auction.auction.events import (
    AuctionAccepted,
    AuctionEnded,
    AuctionEvent,
    PriceUpdate,
    from_message,
)
from dutch_auction.core.message import Message, MessageType

NOW = datetime(2024, 1, 1, tzinfo=UTC)


class AuctionEventsTestCase(unittest.TestCase):
    def test_message_roundtrip_preserves_decimal_precision(self):
        event = AuctionAccepted(
            order_id="o1",
            sequence=7,
            timestamp=NOW,
            accepted_price=Decimal("86.464466094067262378"),
            accepted_by="r1",
            accepted_at=NOW,
        )
        message = Message.unpack(event.to_message().pack())
        unpacked = from_message(message)

        self.assertIsInstance(unpacked, AuctionAccepted)
        self.assertEqual(event, unpacked)
        self.assertEqual("86.464466094067262378", str(unpacked.accepted_price))

    def test_auction_ended_detail(self):
        event = AuctionEnded(
            order_id="o1",
            sequence=2,
            timestamp=NOW,
            reason=EndReason.CANCELLED,
            detail="maker withdrew",
        )
        self.assertEqual(event, AuctionEnded.unpack(event.pack()))

    def test_event_ids_are_unique(self):
        events = [
            PriceUpdate(
                order_id="o1",
                sequence=i,
                timestamp=NOW,
                current_price=Decimal(90),
                progress=Decimal(0),
                time_remaining_ms=5000,
            )
            for i in range(10)
        ]
        self.assertEqual(10, len({event.event_id.bytes for event in events}))

    def test_message_types_are_distinct(self):
        message_types = {
            event_type.message_type().bytes
            for event_type in (AuctionAccepted, AuctionEnded, PriceUpdate)
        }
        self.assertEqual(3, len(message_types))

    def test_auction_event_is_abstract(self):
        with self.assertRaises(TypeError):
            AuctionEvent(order_id="o1", sequence=1, timestamp=NOW)  # type: ignore  # pylint: disable=abstract-class-instantiated

    def test_from_message_rejects_unknown_message_type(self):
        with self.assertRaises(ValueError):
            from_message(Message.create(MessageType(), b"data"))


if __name__ == "__main__":
    unittest.main()
