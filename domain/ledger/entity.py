"""
Ledger domain entities - Order, Refund and event cancellation records.

Business rules:
1. Money is always Decimal; binary floats never enter the ledger.
2. Order.payment_status moves pending -> paid -> refunded (paid -> failed is
   allowed for a failed refund attempt and is retryable back to refunded).
3. Cash orders never carry a processor payment reference.
4. A completed Refund is terminal and immutable.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


ZERO = Decimal("0")


class Platform(str, Enum):
    """Sales channel an order was placed through"""
    GATEWAY = "gateway"   # online payment gateway (web checkout)
    IN_APP = "in_app"     # in-app purchase, settled by the same processor
    CASH = "cash"         # box office / door sale, no remote payment


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundReason(str, Enum):
    EVENT_CANCELLED = "event_cancelled"
    BUYER_REQUESTED = "buyer_requested"
    OTHER = "other"


class AttemptOutcome(str, Enum):
    """Entries of the refund attempt log"""
    STARTED = "started"          # processor call about to be issued
    SUCCEEDED = "succeeded"      # processor confirmed the refund
    FAILED = "failed"            # processor rejected / errored
    TIMEOUT = "timeout"          # no response; outcome unknown
    RECONCILED = "reconciled"    # outcome recovered by querying the processor
    CLEARED = "cleared"          # processor holds no refund for the key
    MANUAL = "manual"            # confirmed by hand (cash)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # go through str() so 0.1 stays 0.1 and not its binary expansion
        return Decimal(str(value))
    return Decimal(value)


@dataclass
class OrderItem:
    ticket_type_id: str
    quantity: int
    unit_price: Decimal = ZERO

    def __post_init__(self):
        self.unit_price = _to_decimal(self.unit_price)
        if self.quantity < 0:
            raise DomainValidationException(
                f"Item quantity must not be negative: {self.quantity}",
                field="quantity",
            )


@dataclass
class Order:
    """
    A buyer's purchase for one event.

    Created at checkout and marked paid by the payment webhook (both outside
    this service); only the refund orchestrator moves it to refunded.
    """

    id: str
    event_id: str
    buyer_id: str
    total_amount: Decimal
    currency: str
    platform: Platform
    payment_status: OrderPaymentStatus
    processor_payment_reference: Optional[str] = None

    # Fee / tax breakdown recorded at payment time
    marketplace_fee: Decimal = ZERO
    processor_fee: Decimal = ZERO
    tax_withholding_a: Decimal = ZERO
    tax_withholding_b: Decimal = ZERO

    items: list[OrderItem] = field(default_factory=list)
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        self.platform = Platform(self.platform)
        self.payment_status = OrderPaymentStatus(self.payment_status)
        self.total_amount = _to_decimal(self.total_amount)
        self.marketplace_fee = _to_decimal(self.marketplace_fee)
        self.processor_fee = _to_decimal(self.processor_fee)
        self.tax_withholding_a = _to_decimal(self.tax_withholding_a)
        self.tax_withholding_b = _to_decimal(self.tax_withholding_b)
        self.created_at = _ensure_utc(self.created_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self._validate()

    def _validate(self) -> None:
        if self.total_amount < 0:
            raise DomainValidationException(
                f"Order total must not be negative: {self.total_amount}",
                field="total_amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )
        if self.platform == Platform.CASH and self.processor_payment_reference:
            raise DomainValidationException(
                "Cash orders cannot carry a processor payment reference",
                field="processor_payment_reference",
            )

    @property
    def is_processor_backed(self) -> bool:
        return self.platform != Platform.CASH

    @property
    def ticket_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def fee_breakdown(self) -> dict[str, str]:
        """Snapshot of what the organization gives up when this order is refunded."""
        return {
            "original_amount": str(self.total_amount),
            "marketplace_fee": str(self.marketplace_fee),
            "processor_fee": str(self.processor_fee),
            "tax_withholding_a": str(self.tax_withholding_a),
            "tax_withholding_b": str(self.tax_withholding_b),
        }

    def mark_refunded(self) -> None:
        if self.payment_status not in (OrderPaymentStatus.PAID, OrderPaymentStatus.FAILED):
            raise DomainValidationException(
                f"Cannot transition order from {self.payment_status.value} to refunded",
                field="payment_status",
            )
        self.payment_status = OrderPaymentStatus.REFUNDED


@dataclass
class RefundAttempt:
    """One entry of a refund's append-only attempt log"""
    outcome: AttemptOutcome
    timestamp: datetime = field(default_factory=_utcnow)
    detail: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.outcome = AttemptOutcome(self.outcome)
        self.timestamp = _ensure_utc(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "timestamp": self.timestamp.isoformat(),
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefundAttempt":
        return cls(
            outcome=AttemptOutcome(data["outcome"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            detail=data.get("detail") or {},
        )


@dataclass
class Refund:
    """
    A refund record, at most one per order.

    The refund id doubles as the processor idempotency key, so it is assigned
    at creation and never changes across retries.
    """

    id: str
    order_id: str
    event_id: str
    amount: Decimal
    currency: str
    reason: RefundReason
    requested_by: str
    status: RefundStatus
    processor_payment_reference: Optional[str] = None
    processor_refund_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    fee_breakdown: dict[str, str] = field(default_factory=dict)
    attempts: list[RefundAttempt] = field(default_factory=list)
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # bumped by the ledger on every write; conditional updates compare it
    version: int = 0

    def __post_init__(self):
        self.amount = _to_decimal(self.amount)
        self.reason = RefundReason(self.reason)
        self.status = RefundStatus(self.status)
        self.processed_at = _ensure_utc(self.processed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.amount < 0:
            raise DomainValidationException(
                f"Refund amount must not be negative: {self.amount}",
                field="amount",
            )

    @property
    def idempotency_key(self) -> str:
        return self.id

    @property
    def is_terminal(self) -> bool:
        return self.status == RefundStatus.COMPLETED

    @property
    def retry_count(self) -> int:
        started = sum(1 for a in self.attempts if a.outcome == AttemptOutcome.STARTED)
        return max(0, started - 1)

    @property
    def last_attempt(self) -> Optional[RefundAttempt]:
        return self.attempts[-1] if self.attempts else None

    @property
    def outcome_unknown(self) -> bool:
        """Last processor call timed out and nobody has checked the processor since."""
        last = self.last_attempt
        return self.status == RefundStatus.FAILED and last is not None and last.outcome == AttemptOutcome.TIMEOUT

    def _append(self, outcome: AttemptOutcome, detail: Optional[dict] = None) -> RefundAttempt:
        attempt = RefundAttempt(outcome=outcome, detail=detail or {})
        self.attempts.append(attempt)
        self.updated_at = attempt.timestamp
        return attempt

    def _guard_not_completed(self, action: str) -> None:
        if self.status == RefundStatus.COMPLETED:
            raise DomainValidationException(
                f"Refund {self.id} is completed; cannot {action}",
                field="status",
            )

    def begin_attempt(self) -> None:
        """pending/processing/failed -> processing"""
        self._guard_not_completed("start another attempt")
        self.status = RefundStatus.PROCESSING
        self.failure_reason = None
        started = sum(1 for a in self.attempts if a.outcome == AttemptOutcome.STARTED)
        self._append(AttemptOutcome.STARTED, {"attempt": started + 1})

    def mark_completed(self, processor_refund_reference: Optional[str], payload: Optional[dict] = None) -> None:
        """processing -> completed"""
        if self.status != RefundStatus.PROCESSING:
            raise DomainValidationException(
                f"Cannot transition refund from {self.status.value} to completed",
                field="status",
            )
        self.status = RefundStatus.COMPLETED
        self.processor_refund_reference = processor_refund_reference
        self.failure_reason = None
        attempt = self._append(AttemptOutcome.SUCCEEDED, payload)
        self.processed_at = attempt.timestamp

    def mark_failed(self, reason: str, payload: Optional[dict] = None, *, timed_out: bool = False) -> None:
        """processing -> failed (timeouts are recorded with the unknown-outcome marker)"""
        if self.status != RefundStatus.PROCESSING:
            raise DomainValidationException(
                f"Cannot transition refund from {self.status.value} to failed",
                field="status",
            )
        self.status = RefundStatus.FAILED
        self.failure_reason = reason
        self._append(AttemptOutcome.TIMEOUT if timed_out else AttemptOutcome.FAILED, payload)

    def mark_reconciled(self, processor_refund_reference: Optional[str], payload: Optional[dict] = None) -> None:
        """failed (outcome unknown) -> completed, after the processor confirmed the refund exists"""
        self._guard_not_completed("reconcile")
        self.status = RefundStatus.COMPLETED
        self.processor_refund_reference = processor_refund_reference
        self.failure_reason = None
        attempt = self._append(AttemptOutcome.RECONCILED, payload)
        self.processed_at = attempt.timestamp

    def clear_unknown_outcome(self, payload: Optional[dict] = None) -> None:
        if not self.outcome_unknown:
            raise DomainValidationException(
                f"Refund {self.id} has no unknown outcome to clear",
                field="status",
            )
        self._append(AttemptOutcome.CLEARED, payload)

    def mark_manually_completed(self, actor_id: str, note: Optional[str] = None) -> None:
        self._guard_not_completed("confirm manually")
        self.status = RefundStatus.COMPLETED
        self.failure_reason = None
        attempt = self._append(AttemptOutcome.MANUAL, {"confirmed_by": actor_id, "note": note})
        self.processed_at = attempt.timestamp


@dataclass
class EventCancellation:
    """Cancellation metadata recorded when an organizer cancels an event"""
    event_id: str
    initiated_by: str
    reason: str
    initiated_at: Optional[datetime] = None

    def __post_init__(self):
        self.initiated_at = _ensure_utc(self.initiated_at) or _utcnow()
        if not self.reason or not self.reason.strip():
            raise DomainValidationException(
                "A cancellation reason is required",
                field="reason",
            )
        self.reason = self.reason.strip()
