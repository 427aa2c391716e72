"""
Refund domain events.

Dataclass events record refund lifecycle facts for downstream handling
(notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class RefundEvent:
    order_id: str
    event_id: str
    refund_id: str
    event_uid: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RefundCompleted(RefundEvent):
    amount: str = ""
    processor_refund_reference: Optional[str] = None


@dataclass
class RefundFailed(RefundEvent):
    reason: Optional[str] = None
    outcome_unknown: bool = False


@dataclass
class CashRefundConfirmed(RefundEvent):
    confirmed_by: str = ""


@dataclass
class CancellationInitiated:
    event_id: str
    initiated_by: str
    reason: str
    paid_orders_count: int = 0
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
