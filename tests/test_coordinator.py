import asyncio
from decimal import Decimal

import pytest

from application.services.cancellation_coordinator import CancellationBatchCoordinator
from application.services.refund_orchestrator import RefundOrchestrator
from domain.common.exceptions import (
    CancellationAlreadyInitiatedException,
    CancellationNotFoundException,
    NoMarketplaceCredentialException,
)
from domain.ledger.entity import OrderPaymentStatus, Platform, RefundStatus
from domain.ledger.events import CancellationInitiated
from infrastructure.external.credentials import StaticCredentialProvider

from conftest import make_order


def _seed(ledger):
    ledger.add_order(make_order("g1", total="100000"))
    ledger.add_order(make_order("g2", total="50000"))
    ledger.add_order(make_order("a1", total="20000", platform=Platform.IN_APP))
    ledger.add_order(make_order("c1", total="30000", platform=Platform.CASH))
    ledger.add_order(make_order("p1", total="10000", status=OrderPaymentStatus.PENDING))
    ledger.add_order(make_order("x1", event_id="event-2"))


@pytest.mark.asyncio
async def test_initiate_cancellation_counts_paid_orders(ledger, coordinator):
    _seed(ledger)

    cancellation, paid = await coordinator.initiate_cancellation("event-1", "organizer-1", "Venue flooded")

    assert paid == 4
    assert cancellation.reason == "Venue flooded"
    assert ledger.cancellations["event-1"].initiated_by == "organizer-1"
    events = coordinator.get_domain_events()
    assert isinstance(events[0], CancellationInitiated)
    assert events[0].paid_orders_count == 4

    with pytest.raises(CancellationAlreadyInitiatedException):
        await coordinator.initiate_cancellation("event-1", "organizer-1", "again")


@pytest.mark.asyncio
async def test_get_cancellation_requires_one(coordinator):
    with pytest.raises(CancellationNotFoundException):
        await coordinator.get_cancellation("event-1")


@pytest.mark.asyncio
async def test_batch_refunds_processor_orders_and_flags_cash(ledger, gateway, coordinator):
    _seed(ledger)
    await coordinator.initiate_cancellation("event-1", "organizer-1", "Venue flooded")

    result = await coordinator.refund_all_orders_for_event("event-1", "organizer-1")

    assert result.total_orders == 4
    assert result.completed == 3
    assert result.pending == 1
    assert result.manual_action_required == 1
    assert result.outstanding_amount == Decimal("30000")
    assert result.cancellation is not None
    assert len(gateway.calls) == 3
    cash_line = next(line for line in result.orders if line.order_id == "c1")
    assert cash_line.requires_manual_action
    assert cash_line.refund_status == RefundStatus.PENDING.value
    assert ledger.orders["x1"].payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_rerunning_batch_retries_only_unfinished_orders(ledger, gateway, coordinator):
    _seed(ledger)
    gateway.mode = "fail"
    first = await coordinator.refund_all_orders_for_event("event-1", "organizer-1")
    assert first.failed == 3
    assert first.completed == 0

    gateway.mode = "ok"
    second = await coordinator.refund_all_orders_for_event("event-1", "organizer-1")
    assert second.completed == 3
    assert second.failed == 0
    # each order kept its idempotency key across both runs
    assert len(gateway.calls) == 6
    assert len(set(gateway.calls)) == 3

    third = await coordinator.refund_all_orders_for_event("event-1", "organizer-1")
    assert third.completed == 3
    assert len(gateway.calls) == 6


@pytest.mark.asyncio
async def test_batch_respects_concurrency_cap(ledger, credentials):
    for i in range(6):
        ledger.add_order(make_order(f"g{i}"))

    class CountingGateway:
        provider = "mercadopago"

        def __init__(self):
            self.in_flight = 0
            self.peak = 0

        async def refund_payment(self, payment_reference, idempotency_key, credential):
            from application.dtos.refunds import ProcessorRefund

            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            await asyncio.sleep(0.01)
            self.in_flight -= 1
            return ProcessorRefund(external_refund_id=f"re-{idempotency_key}", status="completed", provider=self.provider)

        async def find_refund(self, payment_reference, idempotency_key, credential):
            return None

    gateway = CountingGateway()
    orchestrator = RefundOrchestrator(ledger.uow_factory(), gateway, credentials)
    coordinator = CancellationBatchCoordinator(ledger.uow_factory(), orchestrator, max_concurrency=2)

    result = await coordinator.refund_all_orders_for_event("event-1", "organizer-1")

    assert result.completed == 6
    assert gateway.peak <= 2


@pytest.mark.asyncio
async def test_batch_aborts_without_marketplace_credential(ledger, gateway):
    _seed(ledger)
    orchestrator = RefundOrchestrator(ledger.uow_factory(), gateway, StaticCredentialProvider({}))
    coordinator = CancellationBatchCoordinator(ledger.uow_factory(), orchestrator)

    with pytest.raises(NoMarketplaceCredentialException):
        await coordinator.refund_all_orders_for_event("event-1", "organizer-1")
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_status_after_cash_confirmation(ledger, orchestrator, coordinator):
    _seed(ledger)
    await coordinator.refund_all_orders_for_event("event-1", "organizer-1")
    await orchestrator.mark_cash_refund_completed("event-1", "c1", "staff-1")

    status = await coordinator.get_batch_status("event-1")

    assert status.completed == 4
    assert status.manual_action_required == 0
    assert status.outstanding_amount == Decimal("0")
    assert status.progress == 1.0
