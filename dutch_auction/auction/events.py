"""
Auction lifecycle events that are published to observers

For a single auction, events are emitted in this order:

    AuctionStarted -> PriceUpdate* -> (AuctionAccepted -> AuctionEnded(ACCEPTED)) | AuctionEnded(EXPIRED | CANCELLED)

Each event carries a sequence number which is strictly increasing per auction, which observers can use to detect
missed events.

Events are serialized using msgpack. Decimal values are packed as strings and datetimes as ISO-8601 strings.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Self

import msgpack  # type: ignore
from ulid import ULID

from dutch_auction.auction.domain.auction_record import OrderId, AcceptorId
from dutch_auction.auction.domain.auction_status import EndReason
from dutch_auction.auction.domain.price import Price
from dutch_auction.core.message import Serializable, MessageType, Message


@dataclass(slots=True, frozen=True, kw_only=True)
class AuctionEvent(Serializable):
    """
    Base class for auction events
    """

    order_id: OrderId
    # per auction event sequence number
    sequence: int
    timestamp: datetime
    event_id: ULID = field(default_factory=ULID)

    def _header(self) -> tuple:
        return (
            self.event_id.bytes,
            self.order_id,
            self.sequence,
            self.timestamp.isoformat(),
        )

    @staticmethod
    def _unpack_header(header: tuple) -> dict:
        (event_id, order_id, sequence, timestamp) = header
        return {
            "event_id": ULID.from_bytes(event_id),
            "order_id": order_id,
            "sequence": sequence,
            "timestamp": datetime.fromisoformat(timestamp),
        }


@dataclass(slots=True, frozen=True, kw_only=True)
class AuctionStarted(AuctionEvent):
    MSG_TYPE: ClassVar[MessageType] = MessageType.from_str("01J9ZQ4M2X6E8R3T5V7W9Y1A3C")

    start_price: Price
    end_price: Price
    duration_ms: int
    start_time: datetime

    @classmethod
    def message_type(cls) -> MessageType:
        return cls.MSG_TYPE

    @classmethod
    def unpack(cls, packed: bytes) -> Self:
        (header, start_price, end_price, duration_ms, start_time) = msgpack.unpackb(
            packed, use_list=False
        )
        return cls(
            **cls._unpack_header(header),
            start_price=Decimal(start_price),
            end_price=Decimal(end_price),
            duration_ms=duration_ms,
            start_time=datetime.fromisoformat(start_time),
        )

    def pack(self) -> bytes:
        return msgpack.packb(
            (
                self._header(),
                str(self.start_price),
                str(self.end_price),
                self.duration_ms,
                self.start_time.isoformat(),
            )
        )


@dataclass(slots=True, frozen=True, kw_only=True)
class PriceUpdate(AuctionEvent):
    MSG_TYPE: ClassVar[MessageType] = MessageType.from_str("01J9ZQ4M2X6E8R3T5V7W9Y1A3D")

    current_price: Price
    # elapsed / duration clamped to [0, 1]
    progress: Decimal
    time_remaining_ms: int

    @classmethod
    def message_type(cls) -> MessageType:
        return cls.MSG_TYPE

    @classmethod
    def unpack(cls, packed: bytes) -> Self:
        (header, current_price, progress, time_remaining_ms) = msgpack.unpackb(
            packed, use_list=False
        )
        return cls(
            **cls._unpack_header(header),
            current_price=Decimal(current_price),
            progress=Decimal(progress),
            time_remaining_ms=time_remaining_ms,
        )

    def pack(self) -> bytes:
        return msgpack.packb(
            (
                self._header(),
                str(self.current_price),
                str(self.progress),
                self.time_remaining_ms,
            )
        )


@dataclass(slots=True, frozen=True, kw_only=True)
class AuctionAccepted(AuctionEvent):
    MSG_TYPE: ClassVar[MessageType] = MessageType.from_str("01J9ZQ4M2X6E8R3T5V7W9Y1A3E")

    accepted_price: Price
    accepted_by: AcceptorId
    accepted_at: datetime

    @classmethod
    def message_type(cls) -> MessageType:
        return cls.MSG_TYPE

    @classmethod
    def unpack(cls, packed: bytes) -> Self:
        (header, accepted_price, accepted_by, accepted_at) = msgpack.unpackb(
            packed, use_list=False
        )
        return cls(
            **cls._unpack_header(header),
            accepted_price=Decimal(accepted_price),
            accepted_by=accepted_by,
            accepted_at=datetime.fromisoformat(accepted_at),
        )

    def pack(self) -> bytes:
        return msgpack.packb(
            (
                self._header(),
                str(self.accepted_price),
                self.accepted_by,
                self.accepted_at.isoformat(),
            )
        )


@dataclass(slots=True, frozen=True, kw_only=True)
class AuctionEnded(AuctionEvent):
    MSG_TYPE: ClassVar[MessageType] = MessageType.from_str("01J9ZQ4M2X6E8R3T5V7W9Y1A3F")

    reason: EndReason
    # caller supplied cancellation reason
    detail: str | None = None

    @classmethod
    def message_type(cls) -> MessageType:
        return cls.MSG_TYPE

    @classmethod
    def unpack(cls, packed: bytes) -> Self:
        (header, reason, detail) = msgpack.unpackb(packed, use_list=False)
        return cls(
            **cls._unpack_header(header),
            reason=EndReason(reason),
            detail=detail,
        )

    def pack(self) -> bytes:
        return msgpack.packb((self._header(), self.reason.value, self.detail))


# keyed by MessageType bytes
EVENT_TYPES: dict[bytes, type[AuctionEvent]] = {
    event_type.message_type().bytes: event_type
    for event_type in (AuctionStarted, PriceUpdate, AuctionAccepted, AuctionEnded)
}


def from_message(message: Message) -> AuctionEvent:
    """
    Unpacks the auction event carried by the message

    :exception ValueError: if the message does not carry an auction event
    """
    try:
        event_type = EVENT_TYPES[message.msg_type.bytes]
    except KeyError as err:
        raise ValueError(f"message is not an auction event: {message.msg_type}") from err
    return event_type.unpack(message.data)
