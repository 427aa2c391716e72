"""
API dependencies - caller identity and service composition
"""
from typing import Callable, Optional

from fastapi import Depends, Header, Request

from application.ports.processor_gateway import MarketplaceCredentialProvider, ProcessorGateway
from application.services.cancellation_coordinator import CancellationBatchCoordinator
from application.services.financial_report_service import FinancialReportService
from application.services.refund_orchestrator import RefundOrchestrator
from api.middleware import ACTOR_HEADER
from core.config import settings
from core.exceptions import UnauthorizedException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.credentials import EnvMarketplaceCredentialProvider
from infrastructure.external.payments import get_processor_gateway
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from infrastructure.unit_of_work import sqlalchemy_uow_factory


async def get_actor_id(x_user_id: Optional[str] = Header(default=None, alias=ACTOR_HEADER)) -> str:
    """Acting user, set by the authentication layer in front of this service"""
    actor = (x_user_id or "").strip()
    if not actor:
        raise UnauthorizedException(f"Missing {ACTOR_HEADER} header")
    return actor


async def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return sqlalchemy_uow_factory()


async def get_gateway(request: Request) -> ProcessorGateway:
    gateway = getattr(request.app.state, "processor_gateway", None)
    if gateway is None:
        gateway = get_processor_gateway()
        request.app.state.processor_gateway = gateway
    return gateway


async def get_credentials() -> MarketplaceCredentialProvider:
    return EnvMarketplaceCredentialProvider()


async def get_task_dispatcher() -> TaskDispatcher:
    return TaskDispatcher()


async def get_refund_orchestrator(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: ProcessorGateway = Depends(get_gateway),
    credentials: MarketplaceCredentialProvider = Depends(get_credentials),
) -> RefundOrchestrator:
    return RefundOrchestrator(
        uow_factory,
        gateway,
        credentials,
        conflict_retries=settings.refunds.conflict_retries,
    )


async def get_cancellation_coordinator(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator),
) -> CancellationBatchCoordinator:
    return CancellationBatchCoordinator(
        uow_factory,
        orchestrator,
        max_concurrency=settings.refunds.max_concurrency,
    )


async def get_financial_report_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> FinancialReportService:
    return FinancialReportService(uow_factory)
