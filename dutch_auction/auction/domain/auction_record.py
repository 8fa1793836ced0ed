"""
Auction state
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from dutch_auction.auction.domain import price_curve
from dutch_auction.auction.domain.auction_status import AuctionStatus
from dutch_auction.auction.domain.price import Price

OrderId = str
AcceptorId = str


@dataclass(slots=True, frozen=True)
class AuctionSnapshot:
    """
    Immutable view of an auction's committed state.

    Snapshots are what readers see. The AuctionManager publishes a new snapshot each time it commits an auction
    state change, thus reading a snapshot never requires exclusive access to the auction.
    """

    # pylint: disable=too-many-instance-attributes

    order_id: OrderId
    status: AuctionStatus
    start_price: Price
    end_price: Price
    start_time: datetime
    duration_ms: int

    current_price: Price
    # elapsed / duration clamped to [0, 1]
    progress: Decimal
    time_remaining_ms: int

    accepted_by: AcceptorId | None = None
    accepted_price: Price | None = None
    accepted_at: datetime | None = None
    cancel_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AuctionStatus.ACTIVE


@dataclass(slots=True)
class AuctionRecord:
    """
    The mutable state of one running auction.

    The record is owned by the AuctionManager, and is only mutated while holding the auction's lock.

    Invariants
    ----------
    - start_price > end_price >= 0
    - while ACTIVE, current_price is monotonically non-increasing
    - accepted_* fields are set exactly once, on the transition to ACCEPTED
    - once the status is terminal, no field ever changes again
    """

    # pylint: disable=too-many-instance-attributes

    order_id: OrderId
    start_price: Price
    end_price: Price
    start_time: datetime
    # monotonic clock reading when the auction started - elapsed time is measured against it
    start_monotonic_ms: int
    duration_ms: int

    status: AuctionStatus = AuctionStatus.ACTIVE
    current_price: Price = field(init=False)
    # elapsed time when the price was last computed
    elapsed_ms: int = 0

    accepted_by: AcceptorId | None = None
    accepted_price: Price | None = None
    accepted_at: datetime | None = None
    # the elapsed time the accepted price was computed at, i.e., accepted_price == price_curve.price(accepted_elapsed_ms)
    accepted_elapsed_ms: int | None = None
    cancel_reason: str | None = None

    # last event sequence number that was assigned for this auction
    sequence: int = 0

    def __post_init__(self):
        self.current_price = self.start_price

    @property
    def is_active(self) -> bool:
        return self.status == AuctionStatus.ACTIVE

    def next_sequence(self) -> int:
        self.sequence += 1
        return self.sequence

    def elapsed(self, monotonic_ms: int) -> int:
        return monotonic_ms - self.start_monotonic_ms

    def is_expired(self, elapsed_ms: int) -> bool:
        return elapsed_ms >= self.duration_ms

    def price_at(self, elapsed_ms: int) -> Price:
        return price_curve.price(
            elapsed_ms, self.start_price, self.end_price, self.duration_ms
        )

    def update_price(self, elapsed_ms: int) -> Price:
        """
        Recomputes the current price.

        The price never goes up while the auction is active, even if the clock is read out of order by racing threads.
        """
        self._check_active()
        if elapsed_ms > self.elapsed_ms:
            self.elapsed_ms = elapsed_ms
        self.current_price = min(self.current_price, self.price_at(self.elapsed_ms))
        return self.current_price

    def accept(self, acceptor_id: AcceptorId, elapsed_ms: int, now: datetime) -> Price:
        """
        Freezes the price at the specified elapsed time, and transitions the auction to ACCEPTED

        :return: accepted price
        """
        accepted_price = self.update_price(elapsed_ms)
        self.status = AuctionStatus.ACCEPTED
        self.accepted_by = acceptor_id
        self.accepted_price = accepted_price
        self.accepted_at = now
        self.accepted_elapsed_ms = self.elapsed_ms
        return accepted_price

    def expire(self):
        """
        Transitions the auction to EXPIRED. The final price is the end price.
        """
        self._check_active()
        self.elapsed_ms = max(self.elapsed_ms, self.duration_ms)
        self.current_price = self.end_price
        self.status = AuctionStatus.EXPIRED

    def cancel(self, reason: str):
        self._check_active()
        self.status = AuctionStatus.CANCELLED
        self.cancel_reason = reason

    def snapshot(self) -> AuctionSnapshot:
        return AuctionSnapshot(
            order_id=self.order_id,
            status=self.status,
            start_price=self.start_price,
            end_price=self.end_price,
            start_time=self.start_time,
            duration_ms=self.duration_ms,
            current_price=self.current_price,
            progress=price_curve.progress(self.elapsed_ms, self.duration_ms),
            time_remaining_ms=price_curve.time_remaining_ms(
                self.elapsed_ms, self.duration_ms
            ),
            accepted_by=self.accepted_by,
            accepted_price=self.accepted_price,
            accepted_at=self.accepted_at,
            cancel_reason=self.cancel_reason,
        )

    def _check_active(self):
        if not self.is_active:
            raise ValueError(
                f"auction is not active: order_id={self.order_id}, status={self.status!r}"
            )
