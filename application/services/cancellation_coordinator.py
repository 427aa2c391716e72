"""
Cancellation batch coordinator: records an event cancellation and fans the
refund orchestrator out over the event's paid orders.

The coordinator keeps no state of its own. Batch status is recomputed from
the ledger on every call, so resuming an interrupted batch is simply running
it again: completed refunds are skipped and failed ones retried.
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from application.dtos.refunds import BatchResult, CancellationDTO, OrderRefundLine
from application.services.refund_orchestrator import RefundOrchestrator
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    CancellationNotFoundException,
    NoMarketplaceCredentialException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import (
    EventCancellation,
    Order,
    OrderPaymentStatus,
    Refund,
    RefundStatus,
)
from domain.ledger.events import CancellationInitiated


logger = get_logger(__name__)


class CancellationBatchCoordinator:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        orchestrator: RefundOrchestrator,
        *,
        max_concurrency: int = 4,
    ) -> None:
        self._uow_factory = uow_factory
        self._orchestrator = orchestrator
        self._max_concurrency = max(1, max_concurrency)
        self._events: List[CancellationInitiated] = []

    def get_domain_events(self) -> List[CancellationInitiated]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events.clear()

    async def initiate_cancellation(
        self,
        event_id: str,
        initiated_by: str,
        reason: str,
    ) -> Tuple[EventCancellation, int]:
        """Record the cancellation; returns it with the number of paid orders to refund."""
        cancellation = EventCancellation(event_id=event_id, initiated_by=initiated_by, reason=reason)
        async with self._uow_factory() as uow:
            cancellation = await uow.cancellation_repository.create(cancellation)
            paid = await uow.order_repository.list_by_event(event_id, statuses=[OrderPaymentStatus.PAID])

        logger.info(
            "cancellation_initiated",
            event_id=event_id,
            initiated_by=initiated_by,
            paid_orders_count=len(paid),
        )
        self._events.append(
            CancellationInitiated(
                event_id=event_id,
                initiated_by=initiated_by,
                reason=cancellation.reason,
                paid_orders_count=len(paid),
            )
        )
        return cancellation, len(paid)

    async def get_cancellation(self, event_id: str) -> EventCancellation:
        async with self._uow_factory(readonly=True) as uow:
            cancellation = await uow.cancellation_repository.get_by_event(event_id)
        if cancellation is None:
            raise CancellationNotFoundException(event_id)
        return cancellation

    async def refund_all_orders_for_event(self, event_id: str, actor_id: str) -> BatchResult:
        orders, refunds, _ = await self._snapshot(event_id)
        targets = [
            order
            for order in orders
            if order.payment_status == OrderPaymentStatus.PAID
            and order.is_processor_backed
            and not (order.id in refunds and refunds[order.id].is_terminal)
        ]
        logger.info(
            "cancellation_batch_started",
            event_id=event_id,
            targets=len(targets),
            max_concurrency=self._max_concurrency,
        )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(order: Order) -> Refund:
            async with semaphore:
                return await self._orchestrator.refund_order(event_id, order.id, order.platform, actor_id)

        results = await asyncio.gather(*(run(o) for o in targets), return_exceptions=True)
        for order, result in zip(targets, results):
            if not isinstance(result, BaseException):
                continue
            # configuration errors and unexpected failures abort the batch
            if isinstance(result, NoMarketplaceCredentialException) or not isinstance(result, BusinessException):
                raise result
            logger.warning(
                "cancellation_order_skipped",
                event_id=event_id,
                order_id=order.id,
                error_type=result.error_type,
                reason=result.message,
            )

        status = await self.get_batch_status(event_id)
        logger.info(
            "cancellation_batch_finished",
            event_id=event_id,
            completed=status.completed,
            failed=status.failed,
            processing=status.processing,
            pending=status.pending,
            manual_action_required=status.manual_action_required,
        )
        return status

    async def get_batch_status(self, event_id: str) -> BatchResult:
        orders, refunds, cancellation = await self._snapshot(event_id)

        lines: List[OrderRefundLine] = []
        counts = {status: 0 for status in RefundStatus}
        outstanding = Decimal("0")
        for order in orders:
            refund = refunds.get(order.id)
            # refunded orders without a refund record predate this service
            if order.payment_status != OrderPaymentStatus.PAID and refund is None:
                continue
            line = OrderRefundLine.build(order, refund)
            lines.append(line)
            status = refund.status if refund else RefundStatus.PENDING
            counts[status] += 1
            if status != RefundStatus.COMPLETED:
                outstanding += order.total_amount

        return BatchResult(
            event_id=event_id,
            total_orders=len(lines),
            pending=counts[RefundStatus.PENDING],
            processing=counts[RefundStatus.PROCESSING],
            completed=counts[RefundStatus.COMPLETED],
            failed=counts[RefundStatus.FAILED],
            manual_action_required=sum(1 for line in lines if line.requires_manual_action),
            outstanding_amount=outstanding,
            cancellation=CancellationDTO.from_entity(cancellation) if cancellation else None,
            orders=lines,
        )

    async def _snapshot(
        self, event_id: str
    ) -> Tuple[List[Order], Dict[str, Refund], Optional[EventCancellation]]:
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_by_event(event_id)
            refunds = await uow.refund_repository.list_by_event(event_id)
            cancellation = await uow.cancellation_repository.get_by_event(event_id)
        return orders, {r.order_id: r for r in refunds}, cancellation
