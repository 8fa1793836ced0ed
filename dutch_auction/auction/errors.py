"""
Auction engine errors

Errors are raised synchronously to the caller and are never retried by the engine.

Losing the acceptance race is an expected outcome, and is reported via `AuctionNotActive` subclasses, which are
distinct from caller errors (`InvalidPriceRange`, `DuplicateAuction`, ...) and system faults (`AuctionLockTimeout`).
"""
from dataclasses import dataclass

from dutch_auction.auction.domain.auction_status import AuctionStatus


@dataclass(eq=False)
class AuctionError(Exception):
    """
    Base class for auction engine errors
    """

    order_id: str | None
    message: str = ""

    def __str__(self) -> str:
        return f"[{self.__class__.__name__}] [order_id={self.order_id}] {self.message}"


class InvalidPriceRange(AuctionError):
    """
    Raised when the start price is not strictly greater than the end price, or either price is negative
    """


class InvalidPriceUnit(AuctionError):
    """
    Raised when a price is not an explicit decimal amount, e.g., a float
    """


class InvalidAuctionDuration(AuctionError):
    """
    Raised when the auction duration is not positive
    """


class DuplicateAuction(AuctionError):
    """
    An active auction is already being tracked for the order.
    The caller must wait for the auction to terminate, or cancel it.
    """


class AuctionLockTimeout(AuctionError):
    """
    Exclusive access to the auction could not be acquired in time.
    """


class AuctionManagerNotRunning(AuctionError):
    """
    Auctions can only be started while the AuctionManager is running
    """


@dataclass(eq=False)
class AuctionNotActive(AuctionError):
    """
    The auction is not active. The subclass identifies why.

    :field:`status` - the auction's terminal status, or None if no auction was found
    """

    status: AuctionStatus | None = None


class AlreadyAccepted(AuctionNotActive):
    """
    Another acceptor won the auction
    """


class AuctionExpired(AuctionNotActive):
    """
    The auction window elapsed without an acceptance
    """


class AuctionCancelled(AuctionNotActive):
    """
    The auction was cancelled
    """


class AuctionNotFound(AuctionNotActive):
    """
    No auction exists for the order, i.e., it was never started or its outcome is no longer retained
    """


def not_active_error(order_id: str, status: AuctionStatus) -> AuctionNotActive:
    """
    Maps a terminal auction status to the error reported to callers that can no longer act on the auction.
    """
    match status:
        case AuctionStatus.ACCEPTED:
            return AlreadyAccepted(order_id, "auction was already accepted", status)
        case AuctionStatus.EXPIRED:
            return AuctionExpired(order_id, "auction has expired", status)
        case AuctionStatus.CANCELLED:
            return AuctionCancelled(order_id, "auction was cancelled", status)
    raise ValueError(f"auction status is not terminal: {status}")


class OrderError(Exception):
    """
    Base class for order lifecycle errors
    """


@dataclass(eq=False)
class OrderNotFound(OrderError):
    order_id: str


@dataclass(eq=False)
class DuplicateOrder(OrderError):
    order_id: str


@dataclass(eq=False)
class OrderNotEligible(OrderError):
    """
    The order is not in a state that permits the requested operation
    """

    order_id: str
    reason: str
