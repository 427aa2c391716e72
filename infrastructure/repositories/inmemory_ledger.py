"""In-memory implementation of the ledger store.

Single-process only. Useful for local dev and tests. Every conditional write
is a check-and-set with no await in between, so it is atomic with respect to
other coroutines on the same loop. Entities are copied on the way in and out
so callers never share mutable state with the store. Writes are applied
immediately; rollback does not undo them.
"""
from __future__ import annotations

import copy
from typing import Dict, Iterable, List, Optional

from domain.common.exceptions import (
    CancellationAlreadyInitiatedException,
    OrderNotFoundException,
    StaleStateError,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import (
    EventCancellation,
    Order,
    OrderPaymentStatus,
    Refund,
    RefundStatus,
)
from domain.ledger.repository import (
    CancellationRepository,
    OrderRepository,
    RefundRepository,
)


class InMemoryLedger:
    """Backing tables shared by the in-memory repositories"""

    def __init__(self) -> None:
        self.orders: Dict[str, Order] = {}
        self.refunds: Dict[str, Refund] = {}
        self.refund_by_order: Dict[str, str] = {}
        self.cancellations: Dict[str, EventCancellation] = {}

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = copy.deepcopy(order)
        return order

    def uow_factory(self):
        """Callable with the `uow_factory(readonly=...)` signature used by services"""

        def factory(*, readonly: bool = False) -> "InMemoryUnitOfWork":
            return InMemoryUnitOfWork(self, readonly=readonly)

        return factory


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, ledger: InMemoryLedger) -> None:
        self._ledger = ledger

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        order = self._ledger.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def list_by_event(
        self,
        event_id: str,
        statuses: Optional[Iterable[OrderPaymentStatus]] = None,
    ) -> List[Order]:
        wanted = {OrderPaymentStatus(s) for s in statuses} if statuses is not None else None
        return [
            copy.deepcopy(o)
            for o in self._ledger.orders.values()
            if o.event_id == event_id and (wanted is None or o.payment_status in wanted)
        ]

    async def update_payment_status(
        self,
        order_id: str,
        expected: OrderPaymentStatus,
        new: OrderPaymentStatus,
    ) -> Order:
        order = self._ledger.orders.get(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if order.payment_status != OrderPaymentStatus(expected):
            raise StaleStateError("order", order_id, OrderPaymentStatus(expected).value, order.payment_status.value)
        order.payment_status = OrderPaymentStatus(new)
        return copy.deepcopy(order)


class InMemoryRefundRepository(RefundRepository):
    def __init__(self, ledger: InMemoryLedger) -> None:
        self._ledger = ledger

    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        refund = self._ledger.refunds.get(refund_id)
        return copy.deepcopy(refund) if refund else None

    async def get_by_order_id(self, order_id: str) -> Optional[Refund]:
        refund_id = self._ledger.refund_by_order.get(order_id)
        return await self.get_by_id(refund_id) if refund_id else None

    async def list_by_event(self, event_id: str) -> List[Refund]:
        return [copy.deepcopy(r) for r in self._ledger.refunds.values() if r.event_id == event_id]

    async def list_completed_unsettled(self, limit: int = 100) -> List[Refund]:
        matches = []
        for refund in self._ledger.refunds.values():
            order = self._ledger.orders.get(refund.order_id)
            if (
                refund.status == RefundStatus.COMPLETED
                and order is not None
                and order.payment_status != OrderPaymentStatus.REFUNDED
            ):
                matches.append(copy.deepcopy(refund))
        return matches[:limit]

    async def create(self, refund: Refund) -> Refund:
        if refund.order_id in self._ledger.refund_by_order:
            raise StaleStateError("refund", refund.order_id, "absent", "exists")
        self._ledger.refunds[refund.id] = copy.deepcopy(refund)
        self._ledger.refund_by_order[refund.order_id] = refund.id
        return copy.deepcopy(refund)

    async def update(self, refund: Refund, expected_status: RefundStatus) -> Refund:
        stored = self._ledger.refunds.get(refund.id)
        expected = RefundStatus(expected_status)
        if stored is None or stored.status != expected or stored.version != refund.version:
            raise StaleStateError(
                "refund", refund.id, expected.value, stored.status.value if stored else None
            )
        saved = copy.deepcopy(refund)
        saved.version = refund.version + 1
        self._ledger.refunds[refund.id] = saved
        return copy.deepcopy(saved)


class InMemoryCancellationRepository(CancellationRepository):
    def __init__(self, ledger: InMemoryLedger) -> None:
        self._ledger = ledger

    async def get_by_event(self, event_id: str) -> Optional[EventCancellation]:
        cancellation = self._ledger.cancellations.get(event_id)
        return copy.deepcopy(cancellation) if cancellation else None

    async def create(self, cancellation: EventCancellation) -> EventCancellation:
        if cancellation.event_id in self._ledger.cancellations:
            raise CancellationAlreadyInitiatedException(cancellation.event_id)
        self._ledger.cancellations[cancellation.event_id] = copy.deepcopy(cancellation)
        return cancellation


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def __init__(self, ledger: InMemoryLedger, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self.order_repository = InMemoryOrderRepository(ledger)
        self.refund_repository = InMemoryRefundRepository(ledger)
        self.cancellation_repository = InMemoryCancellationRepository(ledger)

    async def commit(self) -> None:
        self._committed = True

    async def rollback(self) -> None:
        self._committed = False
