"""
Refund / cancellation / reporting DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, computed_field, field_validator, model_serializer

from core.response import to_utc_z
from domain.ledger.entity import (
    EventCancellation,
    Order,
    Platform,
    Refund,
    RefundStatus,
)
from domain.ledger.netting import ChannelTotals, FinancialSummary


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                return to_utc_z(value)
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class RefundOrderRequest(DTOBase):
    order_id: str = Field(..., min_length=1)
    platform: Platform


class MarkCashRefundRequest(DTOBase):
    order_id: str = Field(..., min_length=1)
    note: Optional[str] = Field(default=None, max_length=500)


class InitiateCancellationRequest(DTOBase):
    reason: str = Field(..., max_length=1000)

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("cancellation reason must not be empty")
        return v


# ---------------------------------------------------------------------------
# Processor port payloads
# ---------------------------------------------------------------------------

class MarketplaceCredential(BaseModel):
    """Platform-level (marketplace owner) processor credential."""
    provider: str
    access_token: SecretStr


class ProcessorRefund(BaseModel):
    external_refund_id: str
    status: str  # internal outcome: completed | processing
    raw_amount: Optional[Decimal] = None
    provider: str
    raw: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class RefundAttemptDTO(DTOBase):
    outcome: str
    timestamp: datetime
    detail: dict[str, Any] = Field(default_factory=dict)


class RefundDTO(DTOBase):
    id: str
    order_id: str
    event_id: str
    amount: Decimal
    currency: str
    reason: str
    requested_by: str
    status: RefundStatus
    processor_payment_reference: Optional[str] = None
    processor_refund_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    outcome_unknown: bool = False
    retry_count: int = 0
    fee_breakdown: dict[str, str] = Field(default_factory=dict)
    attempts: list[RefundAttemptDTO] = Field(default_factory=list)
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True)

    @classmethod
    def from_entity(cls, refund: Refund) -> "RefundDTO":
        return cls(
            id=refund.id,
            order_id=refund.order_id,
            event_id=refund.event_id,
            amount=refund.amount,
            currency=refund.currency,
            reason=refund.reason.value,
            requested_by=refund.requested_by,
            status=refund.status,
            processor_payment_reference=refund.processor_payment_reference,
            processor_refund_reference=refund.processor_refund_reference,
            failure_reason=refund.failure_reason,
            outcome_unknown=refund.outcome_unknown,
            retry_count=refund.retry_count,
            fee_breakdown=dict(refund.fee_breakdown),
            attempts=[
                RefundAttemptDTO(outcome=a.outcome.value, timestamp=a.timestamp, detail=a.detail)
                for a in refund.attempts
            ],
            processed_at=refund.processed_at,
            created_at=refund.created_at,
        )


class CancellationDTO(DTOBase):
    event_id: str
    initiated_by: str
    reason: str
    initiated_at: datetime

    @classmethod
    def from_entity(cls, cancellation: EventCancellation) -> "CancellationDTO":
        return cls(
            event_id=cancellation.event_id,
            initiated_by=cancellation.initiated_by,
            reason=cancellation.reason,
            initiated_at=cancellation.initiated_at,
        )


class InitiateCancellationResult(DTOBase):
    cancellation: CancellationDTO
    paid_orders_count: int


class OrderRefundLine(DTOBase):
    order_id: str
    buyer_id: str
    amount: Decimal
    currency: str
    platform: Platform
    refund_status: RefundStatus
    refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    requires_manual_action: bool = False

    model_config = ConfigDict(use_enum_values=True)

    @classmethod
    def build(cls, order: Order, refund: Optional[Refund]) -> "OrderRefundLine":
        status = refund.status if refund else RefundStatus.PENDING
        return cls(
            order_id=order.id,
            buyer_id=order.buyer_id,
            amount=order.total_amount,
            currency=order.currency,
            platform=order.platform,
            refund_status=status,
            refund_id=refund.id if refund else None,
            failure_reason=refund.failure_reason if refund else None,
            requires_manual_action=(order.platform == Platform.CASH and status != RefundStatus.COMPLETED),
        )


class BatchResult(DTOBase):
    event_id: str
    total_orders: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    manual_action_required: int = 0
    outstanding_amount: Decimal = Decimal("0")
    cancellation: Optional[CancellationDTO] = None
    orders: list[OrderRefundLine] = Field(default_factory=list)

    @computed_field
    @property
    def progress(self) -> float:
        return (self.completed / self.total_orders) if self.total_orders else 1.0


class ChannelTotalsDTO(DTOBase):
    gross: Decimal
    ticket_count: int
    order_count: int
    marketplace_fee: Decimal
    processor_fee: Decimal
    tax_withholding_a: Decimal
    tax_withholding_b: Decimal
    net: Decimal
    refunded: Decimal
    net_after_refunds: Decimal

    @classmethod
    def from_totals(cls, totals: ChannelTotals) -> "ChannelTotalsDTO":
        return cls(
            gross=totals.gross,
            ticket_count=totals.ticket_count,
            order_count=totals.order_count,
            marketplace_fee=totals.marketplace_fee,
            processor_fee=totals.processor_fee,
            tax_withholding_a=totals.tax_withholding_a,
            tax_withholding_b=totals.tax_withholding_b,
            net=totals.net,
            refunded=totals.refunded,
            net_after_refunds=totals.net_after_refunds,
        )


class FinancialSummaryDTO(DTOBase):
    event_id: str
    include_refunded: bool
    by_channel: dict[str, ChannelTotalsDTO]
    total: ChannelTotalsDTO
    gateway_gross: Decimal
    cash_gross: Decimal

    @classmethod
    def from_summary(cls, event_id: str, summary: FinancialSummary) -> "FinancialSummaryDTO":
        return cls(
            event_id=event_id,
            include_refunded=summary.include_refunded,
            by_channel={p.value: ChannelTotalsDTO.from_totals(t) for p, t in summary.by_channel.items()},
            total=ChannelTotalsDTO.from_totals(summary.total),
            gateway_gross=summary.gateway_gross,
            cash_gross=summary.cash_gross,
        )
