"""Celery beat schedule configuration.

Entries follow the Celery docs layout so new periodic jobs can be added by
copying an existing one.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    # Completed refunds whose order write was lost get their order settled
    "refunds-reconcile-orders": {
        "task": "refunds.reconcile_orders",
        "schedule": float(settings.refunds.reconcile_interval_seconds),
        "kwargs": {"limit": settings.refunds.reconcile_batch_size},
    },
}
