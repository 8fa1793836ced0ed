"""
Auction model classes
"""

from enum import IntEnum, auto


class AuctionStatus(IntEnum):
    """
    An auction starts out ACTIVE, and ends in exactly one of the terminal states:

    - ACCEPTED: an acceptor won the auction, and the price was frozen at the acceptance instant
    - EXPIRED: the auction window elapsed without an acceptance. The final price is the end price.
    - CANCELLED: the auction was cancelled while active

    A terminal auction never becomes ACTIVE again.
    """

    ACTIVE = auto()
    ACCEPTED = auto()
    EXPIRED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self != AuctionStatus.ACTIVE

    def __repr__(self) -> str:
        return f"{self.name}({self.value})"


class EndReason(IntEnum):
    """
    Why an auction ended
    """

    ACCEPTED = auto()
    EXPIRED = auto()
    CANCELLED = auto()

    @classmethod
    def from_status(cls, status: AuctionStatus) -> "EndReason":
        match status:
            case AuctionStatus.ACCEPTED:
                return cls.ACCEPTED
            case AuctionStatus.EXPIRED:
                return cls.EXPIRED
            case AuctionStatus.CANCELLED:
                return cls.CANCELLED
        raise ValueError(f"auction status is not terminal: {status!r}")

    def __repr__(self) -> str:
        return f"{self.name}({self.value})"
