from datetime import datetime, timedelta, timezone

from application.services.refund_jobs import RefundJob


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_backoff_doubles_and_caps():
    job = RefundJob(order_id="o1", event_id="e1", actor_id="u1", next_attempt_after=NOW)

    delays = []
    for _ in range(8):
        job = job.next(NOW, base_seconds=30, max_seconds=600)
        delays.append(job.next_attempt_after - NOW)

    assert delays[:6] == [timedelta(seconds=s) for s in (30, 60, 120, 240, 480, 600)]
    assert all(d == timedelta(seconds=600) for d in delays[5:])
    assert job.attempt == 8


def test_job_is_not_due_before_its_slot():
    job = RefundJob(order_id="o1", event_id="e1", actor_id="u1", next_attempt_after=NOW).next(NOW)
    assert not job.is_due(NOW)
    assert job.is_due(NOW + timedelta(seconds=30))


def test_exhaustion_counts_the_current_attempt():
    job = RefundJob(order_id="o1", event_id="e1", actor_id="u1", attempt=4)
    assert not job.exhausted(6)
    assert job.next().exhausted(6)


def test_payload_survives_the_queue():
    job = RefundJob(order_id="o1", event_id="e1", actor_id="u1", platform="in_app", attempt=2, next_attempt_after=NOW)
    restored = RefundJob.from_payload(job.to_payload())
    assert restored == job


def test_payload_with_naive_timestamp_is_read_as_utc():
    restored = RefundJob.from_payload(
        {"order_id": "o1", "event_id": "e1", "actor_id": "u1", "next_attempt_after": "2026-03-01T12:00:00"}
    )
    assert restored.next_attempt_after == NOW
    assert restored.platform == "gateway"
    assert restored.attempt == 0
