from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.services.cancellation_coordinator import CancellationBatchCoordinator
from application.services.refund_orchestrator import RefundOrchestrator
from domain.common.exceptions import CancellationAlreadyInitiatedException, StaleStateError
from domain.ledger.entity import (
    EventCancellation,
    OrderPaymentStatus,
    Platform,
    Refund,
    RefundReason,
    RefundStatus,
)
from infrastructure.database import build_engine, create_tables, drop_tables
from infrastructure.unit_of_work import sqlalchemy_uow_factory

from conftest import make_order


@pytest_asyncio.fixture
async def uow_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_tables(engine)
    yield sqlalchemy_uow_factory(async_sessionmaker(bind=engine, expire_on_commit=False))
    await drop_tables(engine)
    await engine.dispose()


async def _seed(uow_factory, *orders):
    async with uow_factory() as uow:
        for order in orders:
            await uow.order_repository.add(order)


def _pending_refund(order_id="order-a", refund_id="rf-1") -> Refund:
    return Refund(
        id=refund_id,
        order_id=order_id,
        event_id="event-1",
        amount=Decimal("100000"),
        currency="ARS",
        reason=RefundReason.EVENT_CANCELLED,
        requested_by="organizer-1",
        status=RefundStatus.PENDING,
        processor_payment_reference=f"pay-{order_id}",
        fee_breakdown={"processor_fee": "3000"},
    )


@pytest.mark.asyncio
async def test_order_round_trip_keeps_decimals_and_items(uow_factory):
    await _seed(uow_factory, make_order("order-a", total="1234.56", processor_fee="37.04", tax_a="12.35", quantity=3))

    async with uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id("order-a")

    assert order.total_amount == Decimal("1234.56")
    assert order.processor_fee == Decimal("37.04")
    assert order.tax_withholding_a == Decimal("12.35")
    assert order.ticket_count == 3
    assert order.platform == Platform.GATEWAY


@pytest.mark.asyncio
async def test_order_status_update_is_conditional(uow_factory):
    await _seed(uow_factory, make_order("order-a"))

    async with uow_factory() as uow:
        order = await uow.order_repository.update_payment_status(
            "order-a", expected=OrderPaymentStatus.PAID, new=OrderPaymentStatus.REFUNDED
        )
    assert order.payment_status == OrderPaymentStatus.REFUNDED

    with pytest.raises(StaleStateError) as exc_info:
        async with uow_factory() as uow:
            await uow.order_repository.update_payment_status(
                "order-a", expected=OrderPaymentStatus.PAID, new=OrderPaymentStatus.REFUNDED
            )
    assert exc_info.value.actual == "refunded"


@pytest.mark.asyncio
async def test_one_refund_per_order(uow_factory):
    await _seed(uow_factory, make_order("order-a"))
    async with uow_factory() as uow:
        await uow.refund_repository.create(_pending_refund())

    with pytest.raises(StaleStateError):
        async with uow_factory() as uow:
            await uow.refund_repository.create(_pending_refund(refund_id="rf-2"))

    async with uow_factory(readonly=True) as uow:
        stored = await uow.refund_repository.get_by_order_id("order-a")
    assert stored.id == "rf-1"
    assert stored.fee_breakdown == {"processor_fee": "3000"}


@pytest.mark.asyncio
async def test_refund_update_checks_expected_status(uow_factory):
    await _seed(uow_factory, make_order("order-a"))
    refund = _pending_refund()
    refund.begin_attempt()
    async with uow_factory() as uow:
        await uow.refund_repository.create(refund)

    refund.mark_completed("re_1", {"status": "approved"})
    async with uow_factory() as uow:
        saved = await uow.refund_repository.update(refund, expected_status=RefundStatus.PROCESSING)
    assert saved.status == RefundStatus.COMPLETED
    assert [a.outcome.value for a in saved.attempts] == ["started", "succeeded"]

    with pytest.raises(StaleStateError):
        async with uow_factory() as uow:
            await uow.refund_repository.update(refund, expected_status=RefundStatus.PROCESSING)


@pytest.mark.asyncio
async def test_refund_update_rejects_stale_version(uow_factory):
    await _seed(uow_factory, make_order("order-a"))
    refund = _pending_refund()
    refund.begin_attempt()
    async with uow_factory() as uow:
        await uow.refund_repository.create(refund)

    async with uow_factory(readonly=True) as uow:
        first = await uow.refund_repository.get_by_id("rf-1")
        second = await uow.refund_repository.get_by_id("rf-1")
    assert first.version == 0

    first.begin_attempt()
    async with uow_factory() as uow:
        saved = await uow.refund_repository.update(first, expected_status=RefundStatus.PROCESSING)
    assert saved.version == 1

    second.begin_attempt()
    with pytest.raises(StaleStateError) as exc_info:
        async with uow_factory() as uow:
            await uow.refund_repository.update(second, expected_status=RefundStatus.PROCESSING)
    assert exc_info.value.actual == "processing"

    async with uow_factory(readonly=True) as uow:
        stored = await uow.refund_repository.get_by_id("rf-1")
    assert [a.outcome.value for a in stored.attempts] == ["started", "started"]

@pytest.mark.asyncio
async def test_cancellation_is_recorded_once(uow_factory):
    async with uow_factory() as uow:
        await uow.cancellation_repository.create(
            EventCancellation(event_id="event-1", initiated_by="organizer-1", reason="Storm")
        )
    with pytest.raises(CancellationAlreadyInitiatedException):
        async with uow_factory() as uow:
            await uow.cancellation_repository.create(
                EventCancellation(event_id="event-1", initiated_by="organizer-2", reason="Storm")
            )


@pytest.mark.asyncio
async def test_batch_against_database(uow_factory, gateway, credentials):
    await _seed(
        uow_factory,
        make_order("g1"),
        make_order("g2", total="50000"),
        make_order("c1", platform=Platform.CASH, total="30000"),
    )
    orchestrator = RefundOrchestrator(uow_factory, gateway, credentials)
    coordinator = CancellationBatchCoordinator(uow_factory, orchestrator, max_concurrency=1)

    await coordinator.initiate_cancellation("event-1", "organizer-1", "Storm")
    result = await coordinator.refund_all_orders_for_event("event-1", "organizer-1")

    assert result.completed == 2
    assert result.manual_action_required == 1
    assert result.outstanding_amount == Decimal("30000")
    async with uow_factory(readonly=True) as uow:
        refunded = await uow.order_repository.list_by_event("event-1", statuses=[OrderPaymentStatus.REFUNDED])
        unsettled = await uow.refund_repository.list_completed_unsettled()
    assert sorted(o.id for o in refunded) == ["g1", "g2"]
    assert unsettled == []
