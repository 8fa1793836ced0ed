"""
Settlement collaborator interface

Settlement executes the consequences of an accepted auction, e.g., the asset transfer and the payout.
It is implemented outside the auction engine.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from dutch_auction.auction.domain.auction_record import AcceptorId, OrderId
from dutch_auction.auction.domain.price import Price
from dutch_auction.core.command import Command


@dataclass(slots=True, frozen=True)
class SettlementRequest:
    # pylint: disable=too-many-instance-attributes

    order_id: OrderId
    accepted_price: Price
    accepted_by: AcceptorId
    accepted_at: datetime

    # order payload
    amount: str
    token: str
    recipient_address: str


@dataclass(slots=True, frozen=True)
class SettlementResult:
    order_id: OrderId
    success: bool
    # e.g., transaction hash or payout id
    reference: str | None = None
    error: str | None = None

    @classmethod
    def succeeded(cls, order_id: OrderId, reference: str | None = None) -> "SettlementResult":
        return cls(order_id=order_id, success=True, reference=reference)

    @classmethod
    def failed(cls, order_id: OrderId, error: str) -> "SettlementResult":
        return cls(order_id=order_id, success=False, error=error)


class SettleOrder(Command[SettlementRequest, SettlementResult], ABC):
    """
    Command that settles an accepted order.

    The command is invoked asynchronously by the OrderLifecycle, once per accepted order.
    Failures should be reported via SettlementResult. If the command raises an exception, then settlement is treated
    as failed.
    """

    @abstractmethod
    def __call__(self, request: SettlementRequest) -> SettlementResult:  # pylint: disable=arguments-renamed
        """
        Executes the settlement
        """
