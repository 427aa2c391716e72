"""
Application service driving the refund state machine of a single order.

Refund.id is generated once, persisted before the processor is contacted and
reused as the processor idempotency key on every retry, so any number of
calls for the same order settle at most one remote refund.

Ledger writes are conditional on the expected prior status. A conflicting
write re-reads the current state and retries a bounded number of times
before giving up with RefundConflictException.

The orchestrator depends on the ProcessorGateway and
MarketplaceCredentialProvider ports only; adapters are injected by the
composition root (API dependencies / Celery tasks).
"""
from __future__ import annotations

import uuid
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from application.dtos.refunds import MarketplaceCredential, ProcessorRefund
from application.ports.processor_gateway import (
    MarketplaceCredentialProvider,
    ProcessorError,
    ProcessorGateway,
    ProcessorTimeoutError,
)
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    EventMismatchException,
    NoMarketplaceCredentialException,
    OrderNotFoundException,
    OrderNotPaidException,
    RefundConflictException,
    RefundNotFoundException,
    RefundOutcomeUnknownException,
    StaleStateError,
    UnsupportedChannelException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import (
    Order,
    OrderPaymentStatus,
    Platform,
    Refund,
    RefundReason,
    RefundStatus,
)
from domain.ledger.events import (
    CashRefundConfirmed,
    RefundCompleted,
    RefundEvent,
    RefundFailed,
)


logger = get_logger(__name__)

T = TypeVar("T")

UowFactory = Callable[..., AbstractUnitOfWork]


class RefundOrchestrator:
    def __init__(
        self,
        uow_factory: UowFactory,
        gateway: ProcessorGateway,
        credentials: MarketplaceCredentialProvider,
        *,
        conflict_retries: int = 3,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._credentials = credentials
        self._conflict_retries = max(1, conflict_retries)
        self._events: List[RefundEvent] = []

    # ------------------------------------------------------------------
    # Domain events
    # ------------------------------------------------------------------

    def get_domain_events(self) -> List[RefundEvent]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events.clear()

    # ------------------------------------------------------------------
    # Use cases
    # ------------------------------------------------------------------

    async def refund_order(
        self,
        event_id: str,
        order_id: str,
        platform: Platform | str,
        actor_id: str,
        *,
        reason: RefundReason = RefundReason.EVENT_CANCELLED,
    ) -> Refund:
        """Refund a processor-backed order in full.

        Returns the Refund in its resulting state: ``completed`` on success,
        ``failed`` when the processor rejected or did not answer. Caller
        errors raise before anything is written.
        """
        platform = Platform(platform)
        order, existing = await self._load(order_id)
        self._check_order(order, order_id, event_id)

        if platform == Platform.CASH or not order.is_processor_backed:
            raise UnsupportedChannelException(
                order_id,
                Platform.CASH.value,
                hint="Cash orders are confirmed with the mark-completed operation",
            )

        if existing is not None and existing.is_terminal:
            logger.info("refund_already_completed", order_id=order_id, refund_id=existing.id)
            await self._settle_order(order_id)
            return existing

        if order.payment_status != OrderPaymentStatus.PAID:
            raise OrderNotPaidException(order_id, order.payment_status.value)
        if not order.processor_payment_reference:
            raise DomainValidationException(
                "Order has no processor payment reference to refund",
                field="processor_payment_reference",
                details={"order_id": order_id},
            )

        # Resolve before any write so a configuration error never strands a
        # refund in processing.
        credential = self._resolve_credential()

        refund, call_processor = await self._claim(order, actor_id, reason, credential)
        if not call_processor:
            await self._settle_order(order_id)
            return refund
        return await self._call_processor(order, refund, credential)

    async def mark_cash_refund_completed(
        self,
        event_id: str,
        order_id: str,
        actor_id: str,
        note: Optional[str] = None,
    ) -> Refund:
        """Record a cash refund handed back in person; no processor call."""
        order, existing = await self._load(order_id)
        self._check_order(order, order_id, event_id)

        if order.is_processor_backed:
            raise UnsupportedChannelException(
                order_id,
                order.platform.value,
                hint="Processor-backed orders are refunded through the refund operation",
            )
        if existing is not None and existing.is_terminal:
            await self._settle_order(order_id)
            return existing
        if order.payment_status != OrderPaymentStatus.PAID:
            raise OrderNotPaidException(order_id, order.payment_status.value)

        async def confirm() -> Refund:
            async with self._uow_factory() as uow:
                current = await uow.refund_repository.get_by_order_id(order_id)
                if current is None:
                    refund = self._new_refund(order, actor_id, RefundReason.EVENT_CANCELLED)
                    refund.mark_manually_completed(actor_id, note)
                    return await uow.refund_repository.create(refund)
                if current.is_terminal:
                    return current
                prior = current.status
                current.mark_manually_completed(actor_id, note)
                return await uow.refund_repository.update(current, expected_status=prior)

        refund = await self._retrying("refund", order_id, confirm)
        logger.info("cash_refund_confirmed", order_id=order_id, refund_id=refund.id, confirmed_by=actor_id)
        self._events.append(
            CashRefundConfirmed(
                order_id=order_id,
                event_id=order.event_id,
                refund_id=refund.id,
                confirmed_by=actor_id,
            )
        )
        await self._settle_order(order_id)
        return refund

    async def reconcile_refund(self, event_id: str, order_id: str) -> Refund:
        """Resolve an unknown processor outcome by querying the idempotency key."""
        order, refund = await self._load(order_id)
        self._check_order(order, order_id, event_id)
        if refund is None:
            raise RefundNotFoundException(order_id)

        if refund.outcome_unknown:
            refund = await self._resolve_unknown_outcome(refund, self._resolve_credential())
        if refund.is_terminal:
            await self._settle_order(order_id)
        return refund

    async def reconcile_order_status(self, order_id: str) -> Optional[Order]:
        """Retry only the order-status write of an already completed refund."""
        order, refund = await self._load(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if refund is None:
            raise RefundNotFoundException(order_id)
        if not refund.is_terminal:
            return order
        return await self._settle_order(order_id)

    async def reconcile_completed_refunds(self, limit: int = 100) -> int:
        """Sweep completed refunds whose order write was lost; returns orders settled."""
        async with self._uow_factory(readonly=True) as uow:
            refunds = await uow.refund_repository.list_completed_unsettled(limit=limit)
        settled = 0
        for refund in refunds:
            order = await self._settle_order(refund.order_id)
            if order is not None and order.payment_status == OrderPaymentStatus.REFUNDED:
                settled += 1
        if refunds:
            logger.info("order_status_reconcile_sweep", candidates=len(refunds), settled=settled)
        return settled

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load(self, order_id: str) -> Tuple[Optional[Order], Optional[Refund]]:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                return None, None
            refund = await uow.refund_repository.get_by_order_id(order_id)
            return order, refund

    @staticmethod
    def _check_order(order: Optional[Order], order_id: str, event_id: str) -> Order:
        if order is None:
            raise OrderNotFoundException(order_id)
        if order.event_id != event_id:
            raise EventMismatchException(order_id, event_id)
        return order

    def _resolve_credential(self) -> MarketplaceCredential:
        provider = self._gateway.provider
        credential = self._credentials.get_marketplace_credential(provider)
        if credential is None:
            logger.error("marketplace_credential_missing", provider=provider)
            raise NoMarketplaceCredentialException(provider)
        return credential

    @staticmethod
    def _new_refund(order: Order, actor_id: str, reason: RefundReason) -> Refund:
        # full refund: the organization absorbs the fees recorded on the order
        return Refund(
            id=str(uuid.uuid4()),
            order_id=order.id,
            event_id=order.event_id,
            amount=order.total_amount,
            currency=order.currency,
            reason=reason,
            requested_by=actor_id,
            status=RefundStatus.PENDING,
            processor_payment_reference=order.processor_payment_reference,
            fee_breakdown=order.fee_breakdown(),
        )

    async def _claim(
        self,
        order: Order,
        actor_id: str,
        reason: RefundReason,
        credential: MarketplaceCredential,
    ) -> Tuple[Refund, bool]:
        """Move the order's refund into processing.

        Returns the refund and whether the processor must be called; False
        means the refund turned out to be completed already.
        """

        async def claim() -> Tuple[Refund, bool]:
            async with self._uow_factory(readonly=True) as uow:
                current = await uow.refund_repository.get_by_order_id(order.id)

            if current is not None and current.outcome_unknown:
                current = await self._resolve_unknown_outcome(current, credential)
            if current is not None and current.is_terminal:
                return current, False

            async with self._uow_factory() as uow:
                if current is None:
                    refund = self._new_refund(order, actor_id, reason)
                    refund.begin_attempt()
                    return await uow.refund_repository.create(refund), True
                prior = current.status
                current.begin_attempt()
                return await uow.refund_repository.update(current, expected_status=prior), True

        return await self._retrying("refund", order.id, claim)

    async def _call_processor(
        self,
        order: Order,
        refund: Refund,
        credential: MarketplaceCredential,
    ) -> Refund:
        logger.info(
            "refund_processor_call",
            order_id=order.id,
            refund_id=refund.id,
            idempotency_key=refund.idempotency_key,
            provider=self._gateway.provider,
            attempt=refund.retry_count + 1,
        )
        try:
            result = await self._gateway.refund_payment(
                refund.processor_payment_reference,
                refund.idempotency_key,
                credential,
            )
        except ProcessorTimeoutError as exc:
            return await self._record_failure(refund.id, exc, timed_out=True)
        except ProcessorError as exc:
            return await self._record_failure(refund.id, exc, timed_out=False)

        refund = await self._record_success(refund.id, result)
        if refund.is_terminal:
            await self._settle_order(order.id)
        return refund

    async def _record_success(self, refund_id: str, result: ProcessorRefund) -> Refund:
        payload = {
            "provider": result.provider,
            "external_refund_id": result.external_refund_id,
            "status": result.status,
            "raw_amount": str(result.raw_amount) if result.raw_amount is not None else None,
            "raw": result.raw,
        }

        async def record() -> Refund:
            async with self._uow_factory() as uow:
                current = await uow.refund_repository.get_by_id(refund_id)
                if current is None:
                    raise RefundNotFoundException(refund_id)
                if current.is_terminal:
                    return current
                prior = current.status
                if prior == RefundStatus.PROCESSING:
                    current.mark_completed(result.external_refund_id, payload)
                else:
                    # a concurrent caller recorded a failure; the processor's success wins
                    current.mark_reconciled(result.external_refund_id, payload)
                return await uow.refund_repository.update(current, expected_status=prior)

        refund = await self._retrying("refund", refund_id, record)
        logger.info(
            "refund_completed",
            order_id=refund.order_id,
            refund_id=refund.id,
            processor_refund_reference=refund.processor_refund_reference,
            amount=str(refund.amount),
        )
        self._events.append(
            RefundCompleted(
                order_id=refund.order_id,
                event_id=refund.event_id,
                refund_id=refund.id,
                amount=str(refund.amount),
                processor_refund_reference=refund.processor_refund_reference,
            )
        )
        return refund

    async def _record_failure(self, refund_id: str, exc: ProcessorError, *, timed_out: bool) -> Refund:
        payload = exc.to_payload()

        async def record() -> Refund:
            async with self._uow_factory() as uow:
                current = await uow.refund_repository.get_by_id(refund_id)
                if current is None:
                    raise RefundNotFoundException(refund_id)
                # never overwrite a result recorded by a faster caller
                if current.status != RefundStatus.PROCESSING:
                    return current
                current.mark_failed(exc.message, payload, timed_out=timed_out)
                return await uow.refund_repository.update(current, expected_status=RefundStatus.PROCESSING)

        refund = await self._retrying("refund", refund_id, record)
        if refund.status != RefundStatus.FAILED:
            return refund

        log = logger.warning if timed_out else logger.error
        log(
            "refund_outcome_unknown" if timed_out else "refund_failed",
            order_id=refund.order_id,
            refund_id=refund.id,
            provider=exc.provider,
            provider_code=exc.provider_code,
            http_status=exc.http_status,
            reason=exc.message,
        )
        self._events.append(
            RefundFailed(
                order_id=refund.order_id,
                event_id=refund.event_id,
                refund_id=refund.id,
                reason=exc.message,
                outcome_unknown=timed_out,
            )
        )
        return refund

    async def _resolve_unknown_outcome(self, refund: Refund, credential: MarketplaceCredential) -> Refund:
        try:
            found = await self._gateway.find_refund(
                refund.processor_payment_reference,
                refund.idempotency_key,
                credential,
            )
        except ProcessorError as exc:
            logger.warning(
                "refund_outcome_unknown",
                order_id=refund.order_id,
                refund_id=refund.id,
                reason=exc.message,
                stage="reconcile",
            )
            raise RefundOutcomeUnknownException(refund.id, exc.message) from exc

        async def record() -> Refund:
            async with self._uow_factory() as uow:
                current = await uow.refund_repository.get_by_id(refund.id)
                if current is None:
                    raise RefundNotFoundException(refund.order_id)
                if not current.outcome_unknown:
                    return current
                if found is not None:
                    current.mark_reconciled(
                        found.external_refund_id,
                        {"provider": found.provider, "status": found.status, "raw": found.raw},
                    )
                else:
                    current.clear_unknown_outcome({"provider": self._gateway.provider})
                return await uow.refund_repository.update(current, expected_status=RefundStatus.FAILED)

        reconciled = await self._retrying("refund", refund.id, record)
        logger.info(
            "refund_reconciled",
            order_id=reconciled.order_id,
            refund_id=reconciled.id,
            found=found is not None,
            status=reconciled.status.value,
        )
        if found is not None and reconciled.is_terminal:
            self._events.append(
                RefundCompleted(
                    order_id=reconciled.order_id,
                    event_id=reconciled.event_id,
                    refund_id=reconciled.id,
                    amount=str(reconciled.amount),
                    processor_refund_reference=reconciled.processor_refund_reference,
                )
            )
        return reconciled

    async def _settle_order(self, order_id: str) -> Optional[Order]:
        """Move the order to refunded; a lost race is left to the reconciliation job."""

        async def settle() -> Order:
            async with self._uow_factory() as uow:
                order = await uow.order_repository.get_by_id(order_id)
                if order is None:
                    raise OrderNotFoundException(order_id)
                if order.payment_status == OrderPaymentStatus.REFUNDED:
                    return order
                prior = order.payment_status
                order.mark_refunded()
                return await uow.order_repository.update_payment_status(
                    order_id,
                    expected=prior,
                    new=OrderPaymentStatus.REFUNDED,
                )

        try:
            return await self._retrying("order", order_id, settle)
        except RefundConflictException:
            logger.warning("order_status_reconcile_pending", order_id=order_id)
            return None

    async def _retrying(self, entity: str, entity_id: str, step: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(1, self._conflict_retries + 1):
            try:
                return await step()
            except StaleStateError as exc:
                logger.warning(
                    "refund_update_conflict",
                    entity=entity,
                    entity_id=entity_id,
                    attempt=attempt,
                    expected=exc.expected,
                    actual=exc.actual,
                )
        raise RefundConflictException(entity, entity_id, self._conflict_retries)
