"""
Ledger store interfaces - what the refund core needs from persistence.

Every write is conditional on an expected prior state; implementations raise
StaleStateError when the row moved underneath the caller.
"""
from abc import ABC, abstractmethod
from typing import Iterable, Optional, List

from .entity import (
    EventCancellation,
    Order,
    OrderPaymentStatus,
    Refund,
    RefundStatus,
)


class OrderRepository(ABC):
    """Read surface plus the single conditional status write the core performs"""

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """Load an order"""
        pass

    @abstractmethod
    async def list_by_event(
        self,
        event_id: str,
        statuses: Optional[Iterable[OrderPaymentStatus]] = None,
    ) -> List[Order]:
        """Orders of one event, optionally restricted to some payment statuses"""
        pass

    @abstractmethod
    async def update_payment_status(
        self,
        order_id: str,
        expected: OrderPaymentStatus,
        new: OrderPaymentStatus,
    ) -> Order:
        """Move payment_status from `expected` to `new` or raise StaleStateError"""
        pass


class RefundRepository(ABC):

    @abstractmethod
    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[Refund]:
        """The (single) refund of an order"""
        pass

    @abstractmethod
    async def list_by_event(self, event_id: str) -> List[Refund]:
        pass

    @abstractmethod
    async def list_completed_unsettled(self, limit: int = 100) -> List[Refund]:
        """Completed refunds whose order has not been moved to refunded yet"""
        pass

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """Insert a refund; raises StaleStateError if the order already has one"""
        pass

    @abstractmethod
    async def update(self, refund: Refund, expected_status: RefundStatus) -> Refund:
        """Persist the refund's mutable fields if the stored status is still `expected_status`"""
        pass


class CancellationRepository(ABC):

    @abstractmethod
    async def get_by_event(self, event_id: str) -> Optional[EventCancellation]:
        pass

    @abstractmethod
    async def create(self, cancellation: EventCancellation) -> EventCancellation:
        """Insert; raises CancellationAlreadyInitiatedException on duplicates"""
        pass
