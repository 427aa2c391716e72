from contextlib import asynccontextmanager

import pytest

from application.services.refund_jobs import RefundJob
from domain.ledger.entity import OrderPaymentStatus
from infrastructure.tasks.tasks import refunds as refund_tasks

from conftest import make_order


@pytest.fixture
def scheduled(monkeypatch):
    jobs = []
    monkeypatch.setattr(refund_tasks, "_schedule", lambda task, job: jobs.append(job))
    return jobs


@pytest.fixture
def in_memory_services(monkeypatch, orchestrator, coordinator):
    @asynccontextmanager
    async def _services():
        yield orchestrator, coordinator

    monkeypatch.setattr(refund_tasks, "_services", _services)


def test_process_order_completes_refund(ledger, gateway, in_memory_services, scheduled):
    ledger.add_order(make_order("order-a"))
    job = RefundJob(order_id="order-a", event_id="event-1", actor_id="organizer-1")

    result = refund_tasks.process_order(job.to_payload())

    assert result["status"] == "completed"
    assert scheduled == []
    assert ledger.orders["order-a"].payment_status == OrderPaymentStatus.REFUNDED


def test_failed_job_is_rescheduled_with_backoff(ledger, gateway, in_memory_services, scheduled):
    ledger.add_order(make_order("order-a"))
    gateway.mode = "fail"
    job = RefundJob(order_id="order-a", event_id="event-1", actor_id="organizer-1")

    result = refund_tasks.process_order(job.to_payload())

    assert result["status"] == "rescheduled"
    assert len(scheduled) == 1
    follow_up = scheduled[0]
    assert follow_up.attempt == 1
    assert follow_up.next_attempt_after > job.next_attempt_after


def test_job_gives_up_after_max_attempts(ledger, gateway, in_memory_services, scheduled):
    ledger.add_order(make_order("order-a"))
    gateway.mode = "fail"
    attempts = refund_tasks.settings.refunds.job_max_attempts
    job = RefundJob(order_id="order-a", event_id="event-1", actor_id="organizer-1", attempt=attempts - 1)

    result = refund_tasks.process_order(job.to_payload())

    assert result["status"] == "exhausted"
    assert scheduled == []


def test_refund_event_schedules_jobs_for_failed_orders(ledger, gateway, in_memory_services, scheduled):
    ledger.add_order(make_order("g1"))
    ledger.add_order(make_order("g2"))
    gateway.mode = "fail"

    summary = refund_tasks.refund_event("event-1", "organizer-1")

    assert summary["failed"] == 2
    assert sorted(job.order_id for job in scheduled) == ["g1", "g2"]
    assert all(job.attempt == 1 for job in scheduled)


def test_reconcile_orders_task(ledger, in_memory_services):
    assert refund_tasks.reconcile_orders(10) == {"settled": 0}
