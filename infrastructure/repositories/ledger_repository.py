"""
Ledger repositories - SQLAlchemy implementations of the ledger store.

Status writes are compare-and-set statements
(`UPDATE ... WHERE id = :id AND status = :expected`); a zero rowcount means
another writer moved the row first and surfaces as StaleStateError.
"""
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import (
    CancellationAlreadyInitiatedException,
    OrderNotFoundException,
    StaleStateError,
)
from domain.ledger.entity import (
    EventCancellation,
    Order,
    OrderItem,
    OrderPaymentStatus,
    Refund,
    RefundAttempt,
    RefundStatus,
)
from domain.ledger.repository import (
    CancellationRepository,
    OrderRepository,
    RefundRepository,
)
from infrastructure.models.ledger import (
    EventCancellationModel,
    OrderItemModel,
    OrderModel,
    RefundModel,
)


logger = get_logger(__name__)


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


class SQLAlchemyOrderRepository(OrderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            event_id=model.event_id,
            buyer_id=model.buyer_id,
            total_amount=_dec(model.total_amount),
            currency=model.currency,
            platform=model.platform,
            payment_status=model.payment_status,
            processor_payment_reference=model.processor_payment_reference,
            marketplace_fee=_dec(model.marketplace_fee),
            processor_fee=_dec(model.processor_fee),
            tax_withholding_a=_dec(model.tax_withholding_a),
            tax_withholding_b=_dec(model.tax_withholding_b),
            items=[
                OrderItem(
                    ticket_type_id=item.ticket_type_id,
                    quantity=item.quantity,
                    unit_price=_dec(item.unit_price),
                )
                for item in model.items
            ],
            created_at=model.created_at,
            paid_at=model.paid_at,
        )

    async def add(self, order: Order) -> Order:
        """Insert an order (checkout/seeding; the refund core never creates orders)"""
        model = OrderModel(
            id=order.id,
            event_id=order.event_id,
            buyer_id=order.buyer_id,
            total_amount=order.total_amount,
            currency=order.currency,
            platform=order.platform.value,
            payment_status=order.payment_status.value,
            processor_payment_reference=order.processor_payment_reference,
            marketplace_fee=order.marketplace_fee,
            processor_fee=order.processor_fee,
            tax_withholding_a=order.tax_withholding_a,
            tax_withholding_b=order.tax_withholding_b,
            paid_at=order.paid_at,
            items=[
                OrderItemModel(
                    ticket_type_id=item.ticket_type_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in order.items
            ],
        )
        if order.created_at is not None:
            model.created_at = order.created_at
        self.session.add(model)
        await self.session.flush()
        return await self.get_by_id(order.id)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_by_event(
        self,
        event_id: str,
        statuses: Optional[Iterable[OrderPaymentStatus]] = None,
    ) -> List[Order]:
        query = select(OrderModel).where(OrderModel.event_id == event_id)
        if statuses is not None:
            values = [OrderPaymentStatus(s).value for s in statuses]
            query = query.where(OrderModel.payment_status.in_(values))
        query = query.order_by(OrderModel.created_at.asc(), OrderModel.id.asc())
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update_payment_status(
        self,
        order_id: str,
        expected: OrderPaymentStatus,
        new: OrderPaymentStatus,
    ) -> Order:
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status == OrderPaymentStatus(expected).value,
            )
            .values(payment_status=OrderPaymentStatus(new).value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self.get_by_id(order_id)
            if current is None:
                raise OrderNotFoundException(order_id)
            raise StaleStateError(
                "order", order_id, OrderPaymentStatus(expected).value, current.payment_status.value
            )
        logger.info(
            "order_payment_status_updated",
            order_id=order_id,
            from_status=OrderPaymentStatus(expected).value,
            to_status=OrderPaymentStatus(new).value,
        )
        return await self.get_by_id(order_id)


class SQLAlchemyRefundRepository(RefundRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            order_id=model.order_id,
            event_id=model.event_id,
            amount=_dec(model.amount),
            currency=model.currency,
            reason=model.reason,
            requested_by=model.requested_by,
            status=model.status,
            processor_payment_reference=model.processor_payment_reference,
            processor_refund_reference=model.processor_refund_reference,
            failure_reason=model.failure_reason,
            fee_breakdown=dict(model.fee_breakdown or {}),
            attempts=[RefundAttempt.from_dict(a) for a in (model.attempts or [])],
            processed_at=model.processed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version or 0,
        )

    @staticmethod
    def _mutable_fields(refund: Refund) -> dict:
        return {
            "status": refund.status.value,
            "processor_refund_reference": refund.processor_refund_reference,
            "failure_reason": refund.failure_reason,
            "attempts": [a.to_dict() for a in refund.attempts],
            "processed_at": refund.processed_at,
            "updated_at": refund.updated_at,
        }

    async def _one(self, *criteria) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(*criteria).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        return await self._one(RefundModel.id == refund_id)

    async def get_by_order_id(self, order_id: str) -> Optional[Refund]:
        return await self._one(RefundModel.order_id == order_id)

    async def list_by_event(self, event_id: str) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.event_id == event_id)
            .order_by(RefundModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_completed_unsettled(self, limit: int = 100) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .join(OrderModel, OrderModel.id == RefundModel.order_id)
            .where(
                RefundModel.status == RefundStatus.COMPLETED.value,
                OrderModel.payment_status != OrderPaymentStatus.REFUNDED.value,
            )
            .order_by(RefundModel.processed_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def create(self, refund: Refund) -> Refund:
        fields = self._mutable_fields(refund)
        if fields["updated_at"] is None:
            fields.pop("updated_at")
        model = RefundModel(
            id=refund.id,
            order_id=refund.order_id,
            event_id=refund.event_id,
            amount=refund.amount,
            currency=refund.currency,
            reason=refund.reason.value,
            requested_by=refund.requested_by,
            processor_payment_reference=refund.processor_payment_reference,
            fee_breakdown=dict(refund.fee_breakdown),
            version=refund.version,
            **fields,
        )
        if refund.created_at is not None:
            model.created_at = refund.created_at
        try:
            self.session.add(model)
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            logger.warning("refund_create_conflict", order_id=refund.order_id, refund_id=refund.id)
            raise StaleStateError("refund", refund.order_id, "absent", "exists")
        logger.info(
            "refund_created",
            refund_id=refund.id,
            order_id=refund.order_id,
            status=refund.status.value,
        )
        return await self.get_by_id(refund.id)

    async def update(self, refund: Refund, expected_status: RefundStatus) -> Refund:
        expected = RefundStatus(expected_status).value
        result = await self.session.execute(
            update(RefundModel)
            .where(
                RefundModel.id == refund.id,
                RefundModel.status == expected,
                RefundModel.version == refund.version,
            )
            .values(version=refund.version + 1, **self._mutable_fields(refund))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self.get_by_id(refund.id)
            raise StaleStateError(
                "refund", refund.id, expected, current.status.value if current else None
            )
        logger.info(
            "refund_updated",
            refund_id=refund.id,
            order_id=refund.order_id,
            from_status=expected,
            to_status=refund.status.value,
        )
        return await self.get_by_id(refund.id)


class SQLAlchemyCancellationRepository(CancellationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_event(self, event_id: str) -> Optional[EventCancellation]:
        result = await self.session.execute(
            select(EventCancellationModel).where(EventCancellationModel.event_id == event_id)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return EventCancellation(
            event_id=model.event_id,
            initiated_by=model.initiated_by,
            reason=model.reason,
            initiated_at=model.initiated_at,
        )

    async def create(self, cancellation: EventCancellation) -> EventCancellation:
        if await self.get_by_event(cancellation.event_id) is not None:
            raise CancellationAlreadyInitiatedException(cancellation.event_id)
        try:
            self.session.add(
                EventCancellationModel(
                    event_id=cancellation.event_id,
                    initiated_by=cancellation.initiated_by,
                    reason=cancellation.reason,
                    initiated_at=cancellation.initiated_at,
                )
            )
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            raise CancellationAlreadyInitiatedException(cancellation.event_id)
        logger.info("event_cancellation_recorded", event_id=cancellation.event_id)
        return cancellation
