"""
Refund API routes.

Thin layer over the refund orchestrator: validate input, resolve the actor,
wrap the result in the response envelope. A refund the processor rejected is
answered with 502 and still carries the refund record.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_actor_id, get_refund_orchestrator
from application.dtos.refunds import MarkCashRefundRequest, RefundDTO, RefundOrderRequest
from application.services.refund_orchestrator import RefundOrchestrator
from core.exceptions import business_code_to_http_status
from core.logging_config import get_logger
from core.response import Response, error_response, success_response
from domain.ledger.entity import Refund, RefundStatus
from shared.codes.refund_codes import ProcessorCode


router = APIRouter(prefix="/events/{event_id}/refunds", tags=["Refunds"])
logger = get_logger(__name__)


def _log_events(orchestrator: RefundOrchestrator) -> None:
    for event in orchestrator.get_domain_events():
        logger.info("domain_event", event_type=type(event).__name__, **event.__dict__)
    orchestrator.clear_events()


def _processor_failure(request: Request, refund: Refund) -> JSONResponse:
    code = ProcessorCode.TIMEOUT if refund.outcome_unknown else ProcessorCode.PROVIDER_ERROR
    body = error_response(
        code=code,
        message=refund.failure_reason or "Refund failed at the processor",
        error_type="RefundOutcomeUnknown" if refund.outcome_unknown else "ProcessorError",
        details={"order_id": refund.order_id, "refund_id": refund.id, "outcome_unknown": refund.outcome_unknown},
        request_id=getattr(request.state, "request_id", None),
        data=RefundDTO.from_entity(refund),
    )
    return JSONResponse(status_code=business_code_to_http_status(code), content=body.model_dump(mode="json"))


@router.post("", response_model=Response[RefundDTO], responses={502: {"model": Response[RefundDTO]}})
async def refund_order(
    request: Request,
    event_id: str,
    body: RefundOrderRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator),
):
    """Refund one processor-backed order in full.

    A refund the processor rejected comes back as 502 with the `failed`
    refund in `data`; call again to retry with the same idempotency key.
    """
    refund = await orchestrator.refund_order(event_id, body.order_id, body.platform, actor_id)
    _log_events(orchestrator)
    if refund.status == RefundStatus.FAILED:
        return _processor_failure(request, refund)
    return success_response(data=RefundDTO.from_entity(refund))


@router.post("/mark-completed", response_model=Response[RefundDTO])
async def mark_cash_refund_completed(
    event_id: str,
    body: MarkCashRefundRequest,
    actor_id: str = Depends(get_actor_id),
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator),
):
    """Confirm a cash refund handed back in person"""
    refund = await orchestrator.mark_cash_refund_completed(event_id, body.order_id, actor_id, body.note)
    _log_events(orchestrator)
    return success_response(data=RefundDTO.from_entity(refund))


@router.post("/{order_id}/reconcile", response_model=Response[RefundDTO])
async def reconcile_refund(
    event_id: str,
    order_id: str,
    actor_id: str = Depends(get_actor_id),
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator),
):
    """Ask the processor whether a timed-out refund actually went through"""
    logger.info("refund_reconcile_requested", order_id=order_id, actor_id=actor_id)
    refund = await orchestrator.reconcile_refund(event_id, order_id)
    _log_events(orchestrator)
    return success_response(data=RefundDTO.from_entity(refund))
