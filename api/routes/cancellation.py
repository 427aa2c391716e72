"""
Event cancellation and financial reporting routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_actor_id,
    get_cancellation_coordinator,
    get_financial_report_service,
    get_task_dispatcher,
)
from application.dtos.refunds import (
    BatchResult,
    CancellationDTO,
    FinancialSummaryDTO,
    InitiateCancellationRequest,
    InitiateCancellationResult,
)
from application.services.cancellation_coordinator import CancellationBatchCoordinator
from application.services.financial_report_service import FinancialReportService
from core.logging_config import get_logger
from core.response import Response, success_response
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


router = APIRouter(prefix="/events/{event_id}", tags=["Cancellation"])
logger = get_logger(__name__)


@router.post("/cancellation", response_model=Response[InitiateCancellationResult])
async def initiate_cancellation(
    event_id: str,
    body: InitiateCancellationRequest,
    actor_id: str = Depends(get_actor_id),
    coordinator: CancellationBatchCoordinator = Depends(get_cancellation_coordinator),
):
    cancellation, paid_count = await coordinator.initiate_cancellation(event_id, actor_id, body.reason)
    for event in coordinator.get_domain_events():
        logger.info("domain_event", event_type=type(event).__name__, **event.__dict__)
    coordinator.clear_events()
    return success_response(
        data=InitiateCancellationResult(
            cancellation=CancellationDTO.from_entity(cancellation),
            paid_orders_count=paid_count,
        ),
        message="Event cancellation initiated",
    )


@router.post("/cancellation/refunds", response_model=Response[BatchResult])
async def refund_all_orders(
    event_id: str,
    background: bool = Query(default=False, description="Hand the batch to the refund workers"),
    actor_id: str = Depends(get_actor_id),
    coordinator: CancellationBatchCoordinator = Depends(get_cancellation_coordinator),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
):
    """Refund every paid processor-backed order of the event.

    Safe to call repeatedly: completed refunds are skipped and failed ones
    retried with their original idempotency key.
    """
    if background:
        dispatcher.enqueue_event_refunds(event_id, actor_id)
        status = await coordinator.get_batch_status(event_id)
        return success_response(data=status, message="Refund batch queued")
    result = await coordinator.refund_all_orders_for_event(event_id, actor_id)
    return success_response(data=result)


@router.get("/cancellation", response_model=Response[BatchResult])
async def get_cancellation_status(
    event_id: str,
    coordinator: CancellationBatchCoordinator = Depends(get_cancellation_coordinator),
):
    return success_response(data=await coordinator.get_batch_status(event_id))


@router.get("/financial-summary", response_model=Response[FinancialSummaryDTO])
async def get_financial_summary(
    event_id: str,
    include_refunded: bool = Query(..., description="Count refunded orders as sales and report them separately"),
    service: FinancialReportService = Depends(get_financial_report_service),
):
    return success_response(data=await service.get_financial_summary(event_id, include_refunded=include_refunded))
