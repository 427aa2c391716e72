"""Base class for the refund Celery tasks"""
from __future__ import annotations

from typing import Any, Optional

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


def _order_id(args: Any, kwargs: Any) -> Optional[str]:
    """Pull the order id out of a refund job payload, if the task carries one."""
    for candidate in (*(args or ()), *(kwargs or {}).values()):
        if isinstance(candidate, dict) and "order_id" in candidate:
            return candidate["order_id"]
    return None


class BaseTask(Task):
    """Logs task outcomes with the refund context operators search by."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "refund_task_failure",
            task_id=task_id,
            task_name=self.name,
            order_id=_order_id(args, kwargs),
            event_id=(kwargs or {}).get("event_id"),
            error_type=getattr(exc, "error_type", type(exc).__name__),
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "refund_task_success",
            task_id=task_id,
            task_name=self.name,
            order_id=_order_id(args, kwargs),
            result=retval,
        )
        super().on_success(retval, task_id, args, kwargs)
