"""
Dutch auction simulation

Runs auctions against simulated resolvers. Each resolver decides randomly whether to participate in an auction, and
if so, waits a random delay before attempting to accept the auction at its current price.
"""
import logging
import random
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from threading import Lock, Timer
from time import monotonic, sleep
from typing import Any

from ulid import ULID

from dutch_auction.auction.commands.settle_order import (
    SettleOrder,
    SettlementRequest,
    SettlementResult,
)
from dutch_auction.auction.domain.order import Order, OrderStatus
from dutch_auction.auction.domain.price import to_price
from dutch_auction.auction.errors import AuctionNotActive
from dutch_auction.auction.services.auction_manager import AuctionManager
from dutch_auction.auction.services.event_broadcaster import EventBroadcaster
from dutch_auction.auction.services.order_lifecycle import OrderLifecycle
from dutch_auction.core.logging import configure_logging, log_level


@dataclass(slots=True)
class SimulationConfig:
    """
    [simulation] config section
    """

    # pylint: disable=too-many-instance-attributes

    orders: int = 1
    resolvers: int = 3
    # probability that a resolver participates in an auction
    participation_probability: float = 0.7
    # resolvers wait a random delay in [min_delay_ms, max_delay_ms] before attempting to accept
    min_delay_ms: int = 500
    max_delay_ms: int = 4500
    start_price: Decimal = Decimal("95")
    end_price: Decimal = Decimal("85")
    settlement_failure_rate: float = 0.0
    seed: int | None = None

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "SimulationConfig":
        simulation = cls(**config)
        # TOML floats are rejected as prices, use strings or integers
        simulation.start_price = to_price(simulation.start_price)
        simulation.end_price = to_price(simulation.end_price)
        if not 0 <= simulation.participation_probability <= 1:
            raise ValueError("participation_probability must be in [0, 1]")
        if not 0 <= simulation.settlement_failure_rate <= 1:
            raise ValueError("settlement_failure_rate must be in [0, 1]")
        if simulation.min_delay_ms > simulation.max_delay_ms:
            raise ValueError("min_delay_ms must not be greater than max_delay_ms")
        return simulation


@dataclass(slots=True)
class ResolverAttempt:
    resolver_id: str
    order_id: str
    delay_ms: int
    won: bool | None = None
    error: str | None = None


class SimulatedSettlement(SettleOrder):
    """
    Settles orders instantly, failing randomly at the configured failure rate.
    """

    def __init__(self, failure_rate: float, rng: random.Random):
        self._failure_rate = failure_rate
        self._rng = rng
        self._lock = Lock()

    def __call__(self, request: SettlementRequest) -> SettlementResult:
        with self._lock:
            failed = self._rng.random() < self._failure_rate
        if failed:
            self.get_logger().warning("simulated settlement failure: %s", request.order_id)
            return SettlementResult.failed(request.order_id, "simulated payout failure")
        return SettlementResult.succeeded(request.order_id, reference=str(ULID()))


class App:
    """
    Auction simulation app
    """

    def __init__(self, config: dict[str, Any]):
        auction_config = config.get("auction", {})
        logging_config = config.get("logging", {})

        self.config = config
        self.log_level = log_level(logging_config.get("level", "warning"))
        self.simulation = SimulationConfig.from_config(config.get("simulation", {}))
        self._rng = random.Random(self.simulation.seed)

        self.broadcaster = EventBroadcaster()
        self.auction_manager = AuctionManager(
            broadcaster=self.broadcaster,
            tick_interval=timedelta(milliseconds=auction_config.get("tick_interval_ms", 50)),
            default_duration=timedelta(
                milliseconds=auction_config.get("default_duration_ms", 5000)
            ),
            lock_timeout=timedelta(milliseconds=auction_config.get("lock_timeout_ms", 1000)),
            ended_retention=auction_config.get("ended_retention", 1024),
        )
        self.order_lifecycle = OrderLifecycle(
            auction_manager=self.auction_manager,
            settle_order=SimulatedSettlement(
                self.simulation.settlement_failure_rate, random.Random(self._rng.random())
            ),
        )
        self.attempts: list[ResolverAttempt] = []
        self._attempts_lock = Lock()
        self._timers: list[Timer] = []

    @classmethod
    def from_config_file(cls, file: Path) -> "App":
        """
        Constructs a new app instance from the specified TOML config file
        """
        with open(file, "rb") as config_file:
            config = tomllib.load(config_file)
        return cls(config)

    def run(self, timeout: timedelta | None = None) -> list[Order]:
        """
        Runs the simulation until every order reaches a terminal status.

        :param timeout: defaults to twice the auction duration
        :return: final orders
        :exception TimeoutError: if the orders do not complete in time
        """
        configure_logging(self.log_level)
        logger = logging.getLogger(self.__class__.__name__)

        self.auction_manager.start()
        self.order_lifecycle.start()
        try:
            order_ids = [self._create_order() for _ in range(self.simulation.orders)]
            for order_id in order_ids:
                self.order_lifecycle.start_auction(order_id)
                self._schedule_resolvers(order_id)
                logger.info("auction started: %s", order_id)

            self._await_orders(
                order_ids,
                timeout if timeout else self.auction_manager.default_duration * 2,
            )
            # late resolvers still report their outcome
            for timer in self._timers:
                timer.join()
            return [self.order_lifecycle.get(order_id) for order_id in order_ids]
        finally:
            self.order_lifecycle.stop()
            self.auction_manager.stop()

    def _create_order(self) -> str:
        order = Order(
            order_id=str(ULID()),
            amount="1",
            token="simulated-token",
            recipient_address="simulated-recipient",
            start_price=self.simulation.start_price,
            end_price=self.simulation.end_price,
        )
        return self.order_lifecycle.register(order).order_id

    def _schedule_resolvers(self, order_id: str):
        for i in range(self.simulation.resolvers):
            if self._rng.random() >= self.simulation.participation_probability:
                continue

            attempt = ResolverAttempt(
                resolver_id=f"resolver-{i + 1}",
                order_id=order_id,
                delay_ms=self._rng.randint(
                    self.simulation.min_delay_ms, self.simulation.max_delay_ms
                ),
            )
            with self._attempts_lock:
                self.attempts.append(attempt)

            timer = Timer(attempt.delay_ms / 1000, self._attempt_accept, (attempt,))
            timer.daemon = True
            timer.start()
            self._timers.append(timer)

    def _attempt_accept(self, attempt: ResolverAttempt):
        try:
            self.auction_manager.attempt_accept(attempt.order_id, attempt.resolver_id)
            attempt.won = True
        except AuctionNotActive as err:
            attempt.won = False
            attempt.error = err.__class__.__name__

    def _await_orders(self, order_ids: list[str], timeout: timedelta):
        deadline = monotonic() + timeout.total_seconds()
        while True:
            pending = [
                order_id
                for order_id in order_ids
                if not self.order_lifecycle.get(order_id).status.is_terminal
            ]
            if not pending:
                return
            if monotonic() > deadline:
                raise TimeoutError(f"orders did not complete in time: {pending}")
            sleep(0.01)


def summarize(order: Order) -> str:
    if order.status == OrderStatus.FULFILLED:
        return (
            f"{order.order_id} FULFILLED accepted_by={order.accepted_by} "
            f"price={order.accepted_price} reference={order.settlement_reference}"
        )
    return f"{order.order_id} {order.status.name} accepted_by={order.accepted_by} reason={order.failure_reason}"
