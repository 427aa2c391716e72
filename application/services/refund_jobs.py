"""
Refund job scheduling for the asynchronous worker model.

A RefundJob is a retry-by-resubmission of `refund_order` with an explicit
`next_attempt_after`, so sustained processor outages back off exponentially
instead of hot-looping. Jobs carry no ledger state; the Refund record stays
the source of truth and re-running a job is always safe.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RefundJob:
    order_id: str
    event_id: str
    actor_id: str
    platform: str = "gateway"
    attempt: int = 0
    next_attempt_after: datetime = field(default_factory=_utcnow)

    def backoff(self, base_seconds: float, max_seconds: float) -> timedelta:
        return timedelta(seconds=min(base_seconds * (2 ** self.attempt), max_seconds))

    def is_due(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.next_attempt_after

    def next(
        self,
        now: Optional[datetime] = None,
        *,
        base_seconds: float = 30,
        max_seconds: float = 3600,
    ) -> "RefundJob":
        """The follow-up job after a failed attempt."""
        now = now or _utcnow()
        return replace(
            self,
            attempt=self.attempt + 1,
            next_attempt_after=now + self.backoff(base_seconds, max_seconds),
        )

    def exhausted(self, max_attempts: int) -> bool:
        return self.attempt + 1 >= max_attempts

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe form for the task queue"""
        return {
            "order_id": self.order_id,
            "event_id": self.event_id,
            "actor_id": self.actor_id,
            "platform": self.platform,
            "attempt": self.attempt,
            "next_attempt_after": self.next_attempt_after.isoformat(),
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "RefundJob":
        after = data.get("next_attempt_after")
        ts = datetime.fromisoformat(after) if after else _utcnow()
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return cls(
            order_id=data["order_id"],
            event_id=data["event_id"],
            actor_id=data["actor_id"],
            platform=data.get("platform") or "gateway",
            attempt=int(data.get("attempt", 0)),
            next_attempt_after=ts,
        )
