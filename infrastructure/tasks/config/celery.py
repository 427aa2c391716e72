"""Celery application for the refund workers"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

REFUND_TASK_MODULES = ("infrastructure.tasks.tasks",)

# Processor calls are bounded by the client timeouts; the hard limit only
# catches a wedged worker.
REFUND_SOFT_TIME_LIMIT = 120
REFUND_TIME_LIMIT = 180


def _broker_url() -> str | None:
    return settings.redis.url or os.getenv("CELERY_BROKER_URL")


celery_app = Celery("event_refund_ledger", include=list(REFUND_TASK_MODULES))

celery_app.conf.update(
    broker_url=_broker_url(),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    broker_connection_retry_on_startup=True,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A lost worker redelivers the job; the refund's idempotency key makes the rerun harmless
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_soft_time_limit=REFUND_SOFT_TIME_LIMIT,
    task_time_limit=REFUND_TIME_LIMIT,
    result_expires=24 * 3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_queues=(
        Queue("refunds"),
        Queue("default"),
        Queue("low"),
    ),
    task_routes={
        "refunds.process_order": {"queue": "refunds"},
        "refunds.refund_event": {"queue": "refunds"},
        "refunds.reconcile_orders": {"queue": "low"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

# Local and test runs execute tasks inline instead of needing a broker
if (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        eager=bool(sender.conf.task_always_eager),
        beat_entries=sorted(sender.conf.beat_schedule),
    )
