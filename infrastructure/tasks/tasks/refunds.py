"""
Celery tasks for the refund worker model: per-order refund jobs with
exponential backoff, whole-event batches and the order-status sweep.

Each task runs its coroutine with asyncio.run on a NullPool engine, so no
pooled connection outlives the event loop it was opened on.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Tuple

from celery import shared_task
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from application.services.cancellation_coordinator import CancellationBatchCoordinator
from application.services.refund_jobs import RefundJob
from application.services.refund_orchestrator import RefundOrchestrator
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import RefundConflictException, RefundOutcomeUnknownException
from domain.ledger.entity import RefundStatus
from infrastructure.database import build_engine
from infrastructure.external.credentials import EnvMarketplaceCredentialProvider
from infrastructure.external.payments import get_processor_gateway
from infrastructure.unit_of_work import sqlalchemy_uow_factory

from ..utils.base_task import BaseTask


logger = get_logger(__name__)


@asynccontextmanager
async def _services() -> AsyncIterator[Tuple[RefundOrchestrator, CancellationBatchCoordinator]]:
    engine = build_engine(settings.DATABASE_URL, poolclass=NullPool)
    gateway = get_processor_gateway()
    try:
        uow_factory = sqlalchemy_uow_factory(async_sessionmaker(bind=engine, expire_on_commit=False))
        orchestrator = RefundOrchestrator(
            uow_factory,
            gateway,
            EnvMarketplaceCredentialProvider(),
            conflict_retries=settings.refunds.conflict_retries,
        )
        coordinator = CancellationBatchCoordinator(
            uow_factory,
            orchestrator,
            max_concurrency=settings.refunds.max_concurrency,
        )
        yield orchestrator, coordinator
        for event in orchestrator.get_domain_events():
            logger.info("domain_event", event_type=type(event).__name__, **event.__dict__)
    finally:
        close = getattr(gateway, "aclose", None)
        if callable(close):
            await close()
        await engine.dispose()


def _schedule(task, job: RefundJob) -> None:
    task.apply_async(args=[job.to_payload()], eta=job.next_attempt_after)
    logger.info(
        "refund_job_scheduled",
        order_id=job.order_id,
        attempt=job.attempt,
        next_attempt_after=job.next_attempt_after.isoformat(),
    )


def _follow_up(task, job: RefundJob, reason: str) -> dict:
    cfg = settings.refunds
    if job.exhausted(cfg.job_max_attempts):
        logger.error("refund_job_exhausted", order_id=job.order_id, attempt=job.attempt, reason=reason)
        return {"status": "exhausted", "attempt": job.attempt}
    _schedule(task, job.next(base_seconds=cfg.job_base_backoff_seconds, max_seconds=cfg.job_max_backoff_seconds))
    return {"status": "rescheduled", "attempt": job.attempt + 1}


@shared_task(name="refunds.process_order", bind=True, base=BaseTask)
def process_order(self, job: dict) -> dict:
    refund_job = RefundJob.from_payload(job)
    if not refund_job.is_due() and not self.request.is_eager:
        # delivered before its eta (broker clock skew); put it back
        _schedule(self, refund_job)
        return {"status": "deferred", "attempt": refund_job.attempt}

    async def _run():
        async with _services() as (orchestrator, _):
            return await orchestrator.refund_order(
                refund_job.event_id,
                refund_job.order_id,
                refund_job.platform,
                refund_job.actor_id,
            )

    try:
        refund = asyncio.run(_run())
    except (RefundOutcomeUnknownException, RefundConflictException) as exc:
        logger.warning("refund_job_blocked", order_id=refund_job.order_id, reason=exc.message)
        return _follow_up(self, refund_job, exc.message)

    if refund.status == RefundStatus.FAILED:
        return {"refund_id": refund.id, **_follow_up(self, refund_job, refund.failure_reason or "failed")}
    return {"refund_id": refund.id, "status": refund.status.value, "attempt": refund_job.attempt}


@shared_task(name="refunds.refund_event", bind=True, base=BaseTask)
def refund_event(self, event_id: str, actor_id: str) -> dict:
    async def _run():
        async with _services() as (_, coordinator):
            return await coordinator.refund_all_orders_for_event(event_id, actor_id)

    result = asyncio.run(_run())
    cfg = settings.refunds
    for line in result.orders:
        if line.refund_status == RefundStatus.FAILED.value and not line.requires_manual_action:
            job = RefundJob(
                order_id=line.order_id,
                event_id=event_id,
                actor_id=actor_id,
                platform=line.platform,
            )
            _schedule(
                process_order,
                job.next(base_seconds=cfg.job_base_backoff_seconds, max_seconds=cfg.job_max_backoff_seconds),
            )
    return {
        "event_id": event_id,
        "completed": result.completed,
        "failed": result.failed,
        "pending": result.pending,
        "processing": result.processing,
    }


@shared_task(name="refunds.reconcile_orders", bind=True, base=BaseTask)
def reconcile_orders(self, limit: int = 100) -> dict:
    async def _run():
        async with _services() as (orchestrator, _):
            return await orchestrator.reconcile_completed_refunds(limit=limit)

    settled = asyncio.run(_run())
    return {"settled": settled}
