"""
Runs Dutch auctions
"""
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Iterator

from reactivex import Observable
from reactivex.abc import DisposableBase, PeriodicSchedulerBase
from reactivex.scheduler import EventLoopScheduler

from dutch_auction.auction.domain.auction_record import (
    AcceptorId,
    AuctionRecord,
    AuctionSnapshot,
    OrderId,
)
from dutch_auction.auction.domain.auction_status import AuctionStatus, EndReason
from dutch_auction.auction.domain.price import Price, to_price
from dutch_auction.auction.errors import (
    AuctionExpired,
    AuctionLockTimeout,
    AuctionManagerNotRunning,
    AuctionNotActive,
    AuctionNotFound,
    DuplicateAuction,
    InvalidAuctionDuration,
    InvalidPriceRange,
    not_active_error,
)
from dutch_auction.auction.events import (
    AuctionAccepted,
    AuctionEnded,
    AuctionEvent,
    AuctionStarted,
    PriceUpdate,
)
from dutch_auction.auction.services.event_broadcaster import EventBroadcaster
from dutch_auction.core.clock import Clock, SystemClock
from dutch_auction.core.rx import event_loop_scheduler
from dutch_auction.core.service import Service, ServiceCommand

SHUTDOWN_REASON = "shutdown"


@dataclass(slots=True, frozen=True)
class Acceptance:
    """
    The winning acceptance

    :field:`elapsed_ms` - the price was frozen at this elapsed time, i.e., the accepted price can be verified by
                          recomputing the price curve at this elapsed time
    """

    order_id: OrderId
    accepted_by: AcceptorId
    accepted_price: Price
    accepted_at: datetime
    elapsed_ms: int


@dataclass(slots=True)
class _Auction:
    record: AuctionRecord
    # guards the record - exclusion is per auction
    lock: Lock
    # last committed state - replaced, never mutated
    snapshot: AuctionSnapshot
    # cancellation handle for the scheduled price ticks
    ticker: DisposableBase | None = None


class AuctionManager(Service):
    """
    Owns the set of running auctions.

    Features
    --------
    - start_auction(): starts an auction, which ticks periodically to recompute the current price
    - attempt_accept(): any number of acceptors may race to accept an auction. Exactly one wins.
    - cancel_auction(): cancels an active auction
    - status(): returns the auction's last committed state

    Notes
    -----
    - Exclusion is per auction: tick(), attempt_accept() and cancel_auction() on the same auction are mutually exclusive,
      but never block operations on other auctions.
    - Lock acquisition is bounded by `lock_timeout`. The lock only guards the critical section:
      read elapsed time -> compute price -> commit state transition.
    - status() reads the immutable snapshot that was last committed, and never waits on the auction's lock.
    - Events are published while holding the auction's lock, which guarantees that events for an auction are
      published in commit order.
    - When an auction reaches a terminal state, its ticker is disposed, and it is immediately removed from the active
      auctions. A new auction can then be started for the same order. The final snapshot is retained for the
      most recently ended auctions (up to `ended_retention`), in order to report auction outcomes.
    """

    # pylint: disable=too-many-instance-attributes

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        clock: Clock | None = None,
        tick_interval: timedelta = timedelta(milliseconds=50),
        default_duration: timedelta = timedelta(seconds=5),
        lock_timeout: timedelta = timedelta(seconds=1),
        ended_retention: int = 1024,
        scheduler: PeriodicSchedulerBase | None = None,
        commands: Observable[ServiceCommand] | None = None,
    ):
        """
        :param broadcaster: auction events are published to the broadcaster
        :param clock: defaults to SystemClock
        :param tick_interval: how often active auction prices are recomputed and published.
                              The interval only affects observation granularity - accepted prices are always computed
                              at the acceptance instant.
        :param default_duration: used when an auction is started without a duration
        :param lock_timeout: max time to wait for exclusive access to an auction
        :param ended_retention: max number of ended auction snapshots that are retained
        :param scheduler: used to schedule the price ticks. If not specified, then the service creates its own
                          EventLoopScheduler when started, and disposes it when stopped.
        """
        super().__init__(commands)

        if tick_interval <= timedelta(0):
            raise ValueError("tick_interval must be positive")
        if default_duration < timedelta(milliseconds=1):
            raise ValueError("default_duration must be at least 1 ms")
        if ended_retention < 0:
            raise ValueError("ended_retention must not be negative")

        self._broadcaster = broadcaster
        self._clock = clock if clock else SystemClock()
        self._tick_interval = tick_interval
        self._default_duration = default_duration
        self._lock_timeout = lock_timeout
        self._ended_retention = ended_retention

        self._scheduler = scheduler
        self._owned_scheduler: EventLoopScheduler | None = None

        # guards the auction tables - never held while computing prices
        self._registry_lock = Lock()
        self._auctions: dict[OrderId, _Auction] = {}
        self._ended: OrderedDict[OrderId, AuctionSnapshot] = OrderedDict()

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    @property
    def tick_interval(self) -> timedelta:
        return self._tick_interval

    @property
    def default_duration(self) -> timedelta:
        return self._default_duration

    def _start(self):
        if self._scheduler is None or self._owned_scheduler is not None:
            self._owned_scheduler = event_loop_scheduler(f"{self.name}.ticker")
            self._scheduler = self._owned_scheduler

    def _stop(self):
        for snapshot in self.active_auctions():
            try:
                self.cancel_auction(snapshot.order_id, SHUTDOWN_REASON)
            except AuctionNotActive:
                pass  # ended while shutting down
            except AuctionLockTimeout as err:
                self._logger.error("failed to cancel auction on shutdown: %s", err)

        if self._owned_scheduler:
            self._owned_scheduler.dispose()

    def start_auction(
        self,
        order_id: OrderId,
        start_price: Price | int | str,
        end_price: Price | int | str,
        duration: timedelta | None = None,
    ) -> AuctionSnapshot:
        """
        Starts an auction for the order.

        :param order_id: the caller is trusted to have validated that the order exists and is eligible for auction
        :param start_price: display units
        :param end_price: display units
        :param duration: if not specified, then the default duration is used
        :return: the auction's initial state
        :exception AuctionManagerNotRunning: if the service is not running
        :exception InvalidPriceUnit: if a price is not a Decimal, int, or decimal str
        :exception InvalidPriceRange: if start_price <= end_price, or a price is negative
        :exception InvalidAuctionDuration: if duration is less than 1 ms
        :exception DuplicateAuction: if the order already has an active auction
        """
        if not self.running:
            raise AuctionManagerNotRunning(order_id, f"service state is {self.state.name}")

        start_price = to_price(start_price, order_id)
        end_price = to_price(end_price, order_id)
        if start_price < 0 or end_price < 0:
            raise InvalidPriceRange(
                order_id, f"prices must not be negative: start={start_price}, end={end_price}"
            )
        if start_price <= end_price:
            raise InvalidPriceRange(
                order_id,
                f"start price must be greater than end price: start={start_price}, end={end_price}",
            )

        duration_ms = (duration if duration is not None else self._default_duration) // timedelta(
            milliseconds=1
        )
        if duration_ms <= 0:
            raise InvalidAuctionDuration(order_id, f"duration must be at least 1 ms: {duration}")

        record = AuctionRecord(
            order_id=order_id,
            start_price=start_price,
            end_price=end_price,
            start_time=self._clock.now(),
            start_monotonic_ms=self._clock.monotonic_ms(),
            duration_ms=duration_ms,
        )
        auction = _Auction(record=record, lock=Lock(), snapshot=record.snapshot())

        # ticks cannot run until the started event is published
        with auction.lock:
            with self._registry_lock:
                # checked under the registry lock, i.e., _stop() sees every auction that passed the check
                if not self.running:
                    raise AuctionManagerNotRunning(order_id, f"service state is {self.state.name}")
                existing = self._auctions.get(order_id)
                if existing and existing.snapshot.is_active:
                    raise DuplicateAuction(order_id, "auction is already active")
                self._auctions[order_id] = auction

            try:
                auction.ticker = self._schedule_ticks(auction)
            except Exception:
                with self._registry_lock:
                    if self._auctions.get(order_id) is auction:
                        del self._auctions[order_id]
                self._logger.exception("failed to schedule ticks: order_id=%s", order_id)
                raise

            with self._registry_lock:
                self._ended.pop(order_id, None)
            self._publish(
                auction,
                AuctionStarted,
                start_price=start_price,
                end_price=end_price,
                duration_ms=duration_ms,
                start_time=record.start_time,
            )

        self._logger.info(
            "auction started: order_id=%s, start_price=%s, end_price=%s, duration_ms=%s",
            order_id,
            start_price,
            end_price,
            duration_ms,
        )
        return auction.snapshot

    def tick(self, order_id: OrderId):
        """
        Recomputes the auction's current price, and publishes a PriceUpdate event.
        If the auction duration has elapsed, then the auction expires.

        Ticks are scheduled by the manager. Ticking an auction that is not active is a noop.
        """
        auction = self._lookup(order_id)
        if auction:
            self._tick(auction)

    def attempt_accept(self, order_id: OrderId, acceptor_id: AcceptorId) -> Acceptance:
        """
        Attempts to accept the auction at its current price.

        At most one acceptor wins the auction, no matter how many acceptors attempt concurrently. The winner's price
        is computed at the instant the acceptance is committed.

        :exception AlreadyAccepted: another acceptor won the auction
        :exception AuctionExpired: the auction expired
        :exception AuctionCancelled: the auction was cancelled
        :exception AuctionNotFound: no auction exists for the order
        :exception AuctionLockTimeout: exclusive access to the auction could not be acquired in time
        """
        auction = self._lookup_or_raise(order_id)
        with self._exclusive(auction):
            record = auction.record
            if not record.is_active:
                self._logger.info(
                    "acceptance rejected: order_id=%s, acceptor_id=%s, status=%s",
                    order_id,
                    acceptor_id,
                    record.status.name,
                )
                raise not_active_error(order_id, record.status)

            elapsed_ms = record.elapsed(self._clock.monotonic_ms())
            if record.is_expired(elapsed_ms):
                record.expire()
                self._end(auction)
                raise AuctionExpired(order_id, "auction has expired", AuctionStatus.EXPIRED)

            accepted_price = record.accept(acceptor_id, elapsed_ms, self._clock.now())
            auction.snapshot = record.snapshot()
            self._publish(
                auction,
                AuctionAccepted,
                accepted_price=accepted_price,
                accepted_by=acceptor_id,
                accepted_at=record.accepted_at,
            )
            self._end(auction)

            self._logger.info(
                "auction accepted: order_id=%s, acceptor_id=%s, price=%s, elapsed_ms=%s",
                order_id,
                acceptor_id,
                accepted_price,
                record.accepted_elapsed_ms,
            )
            return Acceptance(
                order_id=order_id,
                accepted_by=acceptor_id,
                accepted_price=accepted_price,
                accepted_at=record.accepted_at,  # type: ignore
                elapsed_ms=record.accepted_elapsed_ms,  # type: ignore
            )

    def cancel_auction(self, order_id: OrderId, reason: str) -> AuctionSnapshot:
        """
        Cancels the active auction

        :param reason: published on the AuctionEnded event
        :return: the auction's final state
        :exception AuctionNotActive: if the auction is not active
        """
        auction = self._lookup_or_raise(order_id)
        with self._exclusive(auction):
            record = auction.record
            if not record.is_active:
                raise not_active_error(order_id, record.status)
            record.cancel(reason)
            self._end(auction, reason)
            self._logger.info("auction cancelled: order_id=%s, reason=%s", order_id, reason)
            return auction.snapshot

    def status(self, order_id: OrderId) -> AuctionSnapshot:
        """
        :return: the auction's last committed state
        :exception AuctionNotFound: if the auction is not active, and its outcome is not retained
        """
        with self._registry_lock:
            auction = self._auctions.get(order_id)
            snapshot = auction.snapshot if auction else self._ended.get(order_id)
        if snapshot is None:
            raise AuctionNotFound(order_id, "auction not found")
        return snapshot

    def active_auctions(self) -> list[AuctionSnapshot]:
        with self._registry_lock:
            auctions = list(self._auctions.values())
        return [auction.snapshot for auction in auctions if auction.snapshot.is_active]

    def _schedule_ticks(self, auction: _Auction) -> DisposableBase:
        def run_tick(_state: Any = None) -> None:
            try:
                self._tick(auction)
            except AuctionLockTimeout as err:
                self._logger.warning("tick skipped: %s", err)
            except Exception:  # pylint: disable=broad-exception-caught
                self._logger.exception("tick failed: order_id=%s", auction.record.order_id)

        assert self._scheduler is not None
        return self._scheduler.schedule_periodic(self._tick_interval, run_tick)

    def _tick(self, auction: _Auction):
        with self._exclusive(auction):
            record = auction.record
            if not record.is_active:
                return

            elapsed_ms = record.elapsed(self._clock.monotonic_ms())
            if record.is_expired(elapsed_ms):
                record.expire()
                self._end(auction)
                self._logger.info("auction expired: order_id=%s", record.order_id)
                return

            record.update_price(elapsed_ms)
            auction.snapshot = record.snapshot()
            self._publish(
                auction,
                PriceUpdate,
                current_price=auction.snapshot.current_price,
                progress=auction.snapshot.progress,
                time_remaining_ms=auction.snapshot.time_remaining_ms,
            )

    def _end(self, auction: _Auction, detail: str | None = None):
        """
        Commits the auction's terminal state. Must be called while holding the auction's lock,
        after the record has transitioned to its terminal status.

        - stops the ticks
        - publishes the AuctionEnded event
        - moves the auction from the active auctions to the ended auctions
        """
        auction.snapshot = auction.record.snapshot()

        ticker, auction.ticker = auction.ticker, None
        if ticker:
            ticker.dispose()

        self._publish(
            auction,
            AuctionEnded,
            reason=EndReason.from_status(auction.record.status),
            detail=detail,
        )

        order_id = auction.record.order_id
        with self._registry_lock:
            if self._auctions.get(order_id) is auction:
                del self._auctions[order_id]
            if self._ended_retention > 0:
                self._ended[order_id] = auction.snapshot
                self._ended.move_to_end(order_id)
                while len(self._ended) > self._ended_retention:
                    self._ended.popitem(last=False)

    def _publish(self, auction: _Auction, event_type: type[AuctionEvent], **fields: Any):
        event = event_type(
            order_id=auction.record.order_id,
            sequence=auction.record.next_sequence(),
            timestamp=self._clock.now(),
            **fields,
        )
        self._broadcaster.publish(event)

    def _lookup(self, order_id: OrderId) -> _Auction | None:
        with self._registry_lock:
            return self._auctions.get(order_id)

    def _lookup_or_raise(self, order_id: OrderId) -> _Auction:
        """
        :exception AuctionNotActive: if the auction has ended
        :exception AuctionNotFound: if the auction does not exist
        """
        with self._registry_lock:
            auction = self._auctions.get(order_id)
            ended = self._ended.get(order_id)
        if auction:
            return auction
        if ended:
            raise not_active_error(order_id, ended.status)
        raise AuctionNotFound(order_id, "auction not found")

    @contextmanager
    def _exclusive(self, auction: _Auction) -> Iterator[None]:
        if not auction.lock.acquire(timeout=self._lock_timeout.total_seconds()):
            raise AuctionLockTimeout(
                auction.record.order_id,
                f"failed to acquire auction lock within {self._lock_timeout}",
            )
        try:
            yield
        finally:
            auction.lock.release()
