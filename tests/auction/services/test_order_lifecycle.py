import unittest
from datetime import timedelta
from decimal import Decimal
from threading import Lock
from time import sleep

from dutch_auction.auction.commands.settle_order import (
    SettleOrder,
    SettlementRequest,
    SettlementResult,
)
from dutch_auction.auction.domain.order import Order, OrderStatus
from dutch_auction.auction.errors import DuplicateOrder, OrderNotEligible, OrderNotFound
from dutch_auction.auction.events import AuctionAccepted
from dutch_auction.auction.services.auction_manager import AuctionManager
from dutch_auction.auction.services.event_broadcaster import EventBroadcaster
from dutch_auction.auction.services.order_lifecycle import (
    OrderLifecycle,
    OrderStatusChanged,
)
from tests.test_support import DutchAuctionTestCase, ManualClock, wait_until


class FakeSettleOrder(SettleOrder):
    def __init__(self):
        self.requests: list[SettlementRequest] = []
        self.result: SettlementResult | None = None
        self.error: Exception | None = None
        self._lock = Lock()

    def __call__(self, request: SettlementRequest) -> SettlementResult:
        with self._lock:
            self.requests.append(request)
        if self.error:
            raise self.error
        if self.result:
            return self.result
        return SettlementResult.succeeded(request.order_id, reference=f"tx-{request.order_id}")


def create_order(order_id: str = "o1") -> Order:
    return Order(
        order_id=order_id,
        amount="1000000",
        token="0xToken",
        recipient_address="0xRecipient",
        start_price=Decimal(90),
        end_price=Decimal(80),
    )


class OrderLifecycleTestCase(DutchAuctionTestCase):
    def setUp(self) -> None:
        self.clock = ManualClock()
        self.manager = AuctionManager(
            broadcaster=EventBroadcaster(),
            clock=self.clock,
            tick_interval=timedelta(hours=1),
        )
        self.settle_order = FakeSettleOrder()
        self.lifecycle = OrderLifecycle(
            auction_manager=self.manager,
            settle_order=self.settle_order,
            clock=self.clock,
        )
        self.changes: list[OrderStatusChanged] = []
        self.lifecycle.observable.subscribe(self.changes.append)

        self.manager.start()
        self.lifecycle.start()

    def tearDown(self) -> None:
        self.lifecycle.stop()
        self.manager.stop()

    def await_status(self, order_id: str, status: OrderStatus) -> Order:
        wait_until(lambda: self.lifecycle.get(order_id).status == status)
        return self.lifecycle.get(order_id)

    def test_order_is_fulfilled(self):
        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1")
        self.assertEqual(OrderStatus.AUCTION_ACTIVE, self.lifecycle.get("o1").status)

        self.clock.advance(2500)
        acceptance = self.manager.attempt_accept("o1", "r1")

        order = self.await_status("o1", OrderStatus.FULFILLED)
        self.assertEqual(acceptance.accepted_price, order.accepted_price)
        self.assertEqual("r1", order.accepted_by)
        self.assertEqual("tx-o1", order.settlement_reference)

        (request,) = self.settle_order.requests
        self.assertEqual(acceptance.accepted_price, request.accepted_price)
        self.assertEqual("r1", request.accepted_by)
        self.assertEqual("1000000", request.amount)
        self.assertEqual("0xToken", request.token)
        self.assertEqual("0xRecipient", request.recipient_address)

        wait_until(lambda: len(self.changes) == 3)
        self.assertEqual(
            [
                (OrderStatus.CREATED, OrderStatus.AUCTION_ACTIVE),
                (OrderStatus.AUCTION_ACTIVE, OrderStatus.ACCEPTED),
                (OrderStatus.ACCEPTED, OrderStatus.FULFILLED),
            ],
            [(change.previous, change.status) for change in self.changes],
        )

    def test_duplicate_accepted_event_settles_once(self):
        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1")
        self.manager.attempt_accept("o1", "r1")
        self.await_status("o1", OrderStatus.FULFILLED)

        event = AuctionAccepted(
            order_id="o1",
            sequence=2,
            timestamp=self.clock.now(),
            accepted_price=Decimal(85),
            accepted_by="r2",
            accepted_at=self.clock.now(),
        )
        self.lifecycle.handle(event)
        self.lifecycle.handle(event)
        sleep(0.05)

        self.assertEqual(1, len(self.settle_order.requests))
        order = self.lifecycle.get("o1")
        self.assertEqual(OrderStatus.FULFILLED, order.status)
        self.assertEqual("r1", order.accepted_by)

    def test_settlement_failure(self):
        self.settle_order.result = SettlementResult.failed("o1", "payout reverted")
        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1")
        acceptance = self.manager.attempt_accept("o1", "r1")

        order = self.await_status("o1", OrderStatus.FAILED)
        self.assertIn("payout reverted", order.failure_reason)
        # the auction outcome is retained
        self.assertEqual(acceptance.accepted_price, order.accepted_price)
        self.assertEqual("r1", order.accepted_by)

    def test_settlement_error(self):
        self.settle_order.error = Exception("BOOM!")
        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1")
        self.manager.attempt_accept("o1", "r1")

        order = self.await_status("o1", OrderStatus.FAILED)
        self.assertIn("BOOM!", order.failure_reason)

    def test_expired_auction_fails_order(self):
        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1", timedelta(seconds=1))
        self.clock.advance(1000)
        self.manager.tick("o1")

        order = self.await_status("o1", OrderStatus.FAILED)
        self.assertEqual("auction expired", order.failure_reason)
        self.assertIsNone(order.accepted_price)
        self.assertEqual([], self.settle_order.requests)

    def test_cancelled_auction_fails_order(self):
        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1")
        self.manager.cancel_auction("o1", "maker withdrew")

        order = self.await_status("o1", OrderStatus.FAILED)
        self.assertEqual("auction cancelled: maker withdrew", order.failure_reason)

    def test_start_auction_eligibility(self):
        with self.assertRaises(OrderNotFound):
            self.lifecycle.start_auction("o1")

        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1")
        with self.assertRaises(OrderNotEligible):
            self.lifecycle.start_auction("o1")

    def test_register(self):
        order = self.lifecycle.register(create_order())
        self.assertEqual(order, self.lifecycle.get("o1"))
        self.assertEqual([order], self.lifecycle.orders(OrderStatus.CREATED))
        self.assertEqual([], self.lifecycle.orders(OrderStatus.FULFILLED))

        with self.assertRaises(DuplicateOrder):
            self.lifecycle.register(create_order())

    def test_fail(self):
        self.lifecycle.register(create_order())
        order = self.lifecycle.fail("o1", "maker cancelled")
        self.assertEqual(OrderStatus.FAILED, order.status)
        self.assertEqual("maker cancelled", order.failure_reason)

        with self.assertRaises(OrderNotEligible):
            self.lifecycle.fail("o1", "again")

    def test_events_are_ignored_when_stopped(self):
        self.lifecycle.register(create_order())
        self.lifecycle.start_auction("o1")
        self.lifecycle.stop()

        self.manager.attempt_accept("o1", "r1")
        sleep(0.05)
        self.assertEqual(OrderStatus.AUCTION_ACTIVE, self.lifecycle.get("o1").status)
        self.assertEqual([], self.settle_order.requests)


if __name__ == "__main__":
    unittest.main()
