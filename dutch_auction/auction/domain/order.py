"""
Order domain model
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import IntEnum, auto

from dutch_auction.auction.domain.auction_record import AcceptorId, OrderId
from dutch_auction.auction.domain.price import Price


class OrderStatus(IntEnum):
    """
    CREATED -> AUCTION_ACTIVE -> ACCEPTED -> FULFILLED

    FAILED is reachable from any non-terminal state.
    """

    CREATED = auto()
    AUCTION_ACTIVE = auto()
    ACCEPTED = auto()
    FULFILLED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FULFILLED, OrderStatus.FAILED)

    def __repr__(self) -> str:
        return f"{self.name}({self.value})"


@dataclass(slots=True, frozen=True)
class Order:
    """
    The maker's order that is offered via Dutch auction.

    `amount`, `token`, and `recipient_address` are passed through untouched to settlement.
    """

    # pylint: disable=too-many-instance-attributes

    order_id: OrderId
    amount: str
    token: str
    recipient_address: str

    # auction price range - display units
    start_price: Price
    end_price: Price

    status: OrderStatus = OrderStatus.CREATED

    accepted_price: Price | None = None
    accepted_by: AcceptorId | None = None
    accepted_at: datetime | None = None
    # settlement reference returned by the settlement collaborator
    settlement_reference: str | None = None
    failure_reason: str | None = None

    updated_at: datetime | None = None

    def transition(self, status: OrderStatus, updated_at: datetime, **changes) -> "Order":
        """
        :return: a copy of the order with the new status and changes applied
        """
        return replace(self, status=status, updated_at=updated_at, **changes)
