"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from application.services.refund_jobs import RefundJob
from ..config.celery import celery_app


class TaskDispatcher:
    """Facade the API layer uses to hand refund work to the worker pool."""

    def enqueue_refund_job(self, job: RefundJob) -> None:
        celery_app.send_task(
            "refunds.process_order",
            args=[job.to_payload()],
            eta=job.next_attempt_after,
        )

    def enqueue_event_refunds(self, event_id: str, actor_id: str) -> None:
        """Run the whole cancellation batch of an event on a worker."""
        celery_app.send_task(
            "refunds.refund_event",
            kwargs={"event_id": event_id, "actor_id": actor_id},
        )

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
