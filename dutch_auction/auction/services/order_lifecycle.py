"""
Drives orders through their lifecycle, based on the outcome of their auctions
"""
from dataclasses import dataclass
from datetime import timedelta
from threading import RLock
from typing import Any, Iterable

from reactivex import Observable, Subject
from reactivex.abc import DisposableBase, SchedulerBase
from reactivex.operators import observe_on

from dutch_auction.auction.commands.settle_order import (
    SettleOrder,
    SettlementRequest,
    SettlementResult,
)
from dutch_auction.auction.domain.auction_record import AuctionSnapshot, OrderId
from dutch_auction.auction.domain.auction_status import EndReason
from dutch_auction.auction.domain.order import Order, OrderStatus
from dutch_auction.auction.errors import DuplicateOrder, OrderNotEligible, OrderNotFound
from dutch_auction.auction.events import (
    AuctionAccepted,
    AuctionEnded,
    AuctionEvent,
    AuctionStarted,
    PriceUpdate,
)
from dutch_auction.auction.services.auction_manager import AuctionManager
from dutch_auction.core.clock import Clock, SystemClock
from dutch_auction.core.rx import default_scheduler
from dutch_auction.core.service import Service, ServiceCommand


@dataclass(slots=True, frozen=True)
class OrderStatusChanged:
    """
    Published each time an order transitions.

    The external order store subscribes to these events to make order outcomes durable.
    """

    order_id: OrderId
    previous: OrderStatus
    status: OrderStatus
    order: Order


class OrderLifecycle(Service):
    """
    Advances orders through: CREATED -> AUCTION_ACTIVE -> ACCEPTED -> FULFILLED | FAILED

    While running, the service consumes the AuctionManager's events:

    | event                            | transition                                         |
    |----------------------------------|----------------------------------------------------|
    | AuctionStarted                   | CREATED -> AUCTION_ACTIVE                          |
    | PriceUpdate                      | none                                               |
    | AuctionAccepted                  | CREATED, AUCTION_ACTIVE -> ACCEPTED, then settles  |
    | AuctionEnded(ACCEPTED)           | none                                               |
    | AuctionEnded(EXPIRED, CANCELLED) | CREATED, AUCTION_ACTIVE -> FAILED                  |
    | settlement succeeded             | ACCEPTED -> FULFILLED                              |
    | settlement failed                | ACCEPTED -> FAILED                                 |

    Any event that does not apply to the order's current status is ignored. Thus, handling the same event twice never
    applies a transition twice, and settlement is invoked at most once per order.

    Settlement failures do not reverse the auction outcome. The accepted price and acceptor are retained on the
    failed order.
    """

    # pylint: disable=too-many-instance-attributes

    def __init__(
        self,
        auction_manager: AuctionManager,
        settle_order: SettleOrder,
        clock: Clock | None = None,
        scheduler: SchedulerBase | None = None,
        commands: Observable[ServiceCommand] | None = None,
    ):
        """
        :param auction_manager: auctions are started via the manager, and their events are consumed from its broadcaster
        :param settle_order: invoked asynchronously when an order is accepted
        :param scheduler: settlement is run on the scheduler - defaults to the default thread pool scheduler
        """
        super().__init__(commands)
        self._auction_manager = auction_manager
        self._settle_order = settle_order
        self._clock = clock if clock else SystemClock()
        self._scheduler = scheduler if scheduler else default_scheduler

        self._lock = RLock()
        self._orders: dict[OrderId, Order] = {}
        self._subscription: DisposableBase | None = None

        self._subject: Subject[OrderStatusChanged] = Subject()
        self._observable: Observable[OrderStatusChanged] = self._subject.pipe(
            observe_on(default_scheduler)
        )

    @property
    def observable(self) -> Observable[OrderStatusChanged]:
        return self._observable

    def _start(self):
        self._subscription = self._auction_manager.broadcaster.subscribe(self.handle)

    def _stop(self):
        if self._subscription:
            self._subscription.dispose()
            self._subscription = None

    def register(self, order: Order) -> Order:
        """
        Registers a new order

        :exception DuplicateOrder: if an order with the same id is already registered
        """
        with self._lock:
            if order.order_id in self._orders:
                raise DuplicateOrder(order.order_id)
            self._orders[order.order_id] = order
        self._logger.info("order registered: %s", order.order_id)
        return order

    def get(self, order_id: OrderId) -> Order:
        """
        :exception OrderNotFound: if the order is not registered
        """
        with self._lock:
            try:
                return self._orders[order_id]
            except KeyError as err:
                raise OrderNotFound(order_id) from err

    def orders(self, status: OrderStatus | None = None) -> list[Order]:
        with self._lock:
            return [
                order
                for order in self._orders.values()
                if status is None or order.status == status
            ]

    def start_auction(self, order_id: OrderId, duration: timedelta | None = None) -> AuctionSnapshot:
        """
        Starts the order's auction using the order's price range.

        :exception OrderNotFound: if the order is not registered
        :exception OrderNotEligible: if the order status is not CREATED
        """
        order = self.get(order_id)
        if order.status != OrderStatus.CREATED:
            raise OrderNotEligible(order_id, f"order status is {order.status.name}, must be CREATED")

        snapshot = self._auction_manager.start_auction(
            order_id, order.start_price, order.end_price, duration
        )
        self._transition(order_id, {OrderStatus.CREATED}, OrderStatus.AUCTION_ACTIVE)
        return snapshot

    def fail(self, order_id: OrderId, reason: str) -> Order:
        """
        Fails the order.

        :exception OrderNotFound: if the order is not registered
        :exception OrderNotEligible: if the order status is terminal
        """
        order = self.get(order_id)
        failed = self._transition(
            order_id,
            {
                OrderStatus.CREATED,
                OrderStatus.AUCTION_ACTIVE,
                OrderStatus.ACCEPTED,
            },
            OrderStatus.FAILED,
            failure_reason=reason,
        )
        if failed is None:
            raise OrderNotEligible(order_id, f"order status is {order.status.name}")
        return failed

    def handle(self, event: AuctionEvent):
        """
        Applies the auction event to its order
        """
        match event:
            case AuctionStarted():
                self._transition(
                    event.order_id, {OrderStatus.CREATED}, OrderStatus.AUCTION_ACTIVE
                )
            case PriceUpdate():
                pass
            case AuctionAccepted():
                order = self._transition(
                    event.order_id,
                    {OrderStatus.CREATED, OrderStatus.AUCTION_ACTIVE},
                    OrderStatus.ACCEPTED,
                    accepted_price=event.accepted_price,
                    accepted_by=event.accepted_by,
                    accepted_at=event.accepted_at,
                )
                if order:
                    self._schedule_settlement(order)
            case AuctionEnded(reason=EndReason.ACCEPTED):
                pass
            case AuctionEnded():
                reason = f"auction {event.reason.name.lower()}"
                self._transition(
                    event.order_id,
                    {OrderStatus.CREATED, OrderStatus.AUCTION_ACTIVE},
                    OrderStatus.FAILED,
                    failure_reason=f"{reason}: {event.detail}" if event.detail else reason,
                )
            case _:
                self._logger.warning("unsupported auction event: %s", event)

    def _schedule_settlement(self, order: Order):
        def settle(_scheduler: SchedulerBase, _state: Any = None):
            self._settle(order)

        self._scheduler.schedule(settle)

    def _settle(self, order: Order):
        request = SettlementRequest(
            order_id=order.order_id,
            accepted_price=order.accepted_price,  # type: ignore
            accepted_by=order.accepted_by,  # type: ignore
            accepted_at=order.accepted_at,  # type: ignore
            amount=order.amount,
            token=order.token,
            recipient_address=order.recipient_address,
        )
        self._logger.info("settling order: %s", request)
        try:
            result = self._settle_order(request)
        except Exception as err:  # pylint: disable=broad-exception-caught
            self._logger.exception("settlement failed: order_id=%s", order.order_id)
            result = SettlementResult.failed(order.order_id, repr(err))

        if result.success:
            self._transition(
                order.order_id,
                {OrderStatus.ACCEPTED},
                OrderStatus.FULFILLED,
                settlement_reference=result.reference,
            )
        else:
            self._transition(
                order.order_id,
                {OrderStatus.ACCEPTED},
                OrderStatus.FAILED,
                failure_reason=f"settlement failed: {result.error}",
            )

    def _transition(
        self,
        order_id: OrderId,
        allowed: Iterable[OrderStatus],
        status: OrderStatus,
        **changes: Any,
    ) -> Order | None:
        """
        :return: the transitioned order, or None if the order is not registered or its status is not allowed
        """
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                self._logger.debug("ignoring transition for unregistered order: %s", order_id)
                return None
            if order.status not in allowed:
                self._logger.debug(
                    "ignoring transition: order_id=%s, %s -> %s",
                    order_id,
                    order.status.name,
                    status.name,
                )
                return None

            transitioned = order.transition(status, self._clock.now(), **changes)
            self._orders[order_id] = transitioned
            self._logger.info(
                "order transition: order_id=%s, %s -> %s",
                order_id,
                order.status.name,
                status.name,
            )
            self._subject.on_next(
                OrderStatusChanged(order_id, order.status, status, transitioned)
            )
            return transitioned
