"""Financial reporting over the ledger (read-only)."""
from __future__ import annotations

from typing import Callable

from application.dtos.refunds import FinancialSummaryDTO
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import OrderPaymentStatus
from domain.ledger.netting import compute_financial_summary


class FinancialReportService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    async def get_financial_summary(self, event_id: str, *, include_refunded: bool) -> FinancialSummaryDTO:
        statuses = [OrderPaymentStatus.PAID]
        if include_refunded:
            statuses.append(OrderPaymentStatus.REFUNDED)
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_by_event(event_id, statuses=statuses)
        summary = compute_financial_summary(orders, include_refunded=include_refunded)
        return FinancialSummaryDTO.from_summary(event_id, summary)
