"""
Ledger database models - SQLAlchemy ORM mappings.
Infrastructure detail only; business rules live in domain.ledger.entity.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """
    Orders are written by checkout and the payment webhook; the refund
    service reads them and only ever updates payment_status.
    """
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    event_id = Column(String(64), nullable=False, index=True, comment="Event the tickets belong to")
    buyer_id = Column(String(64), nullable=False, index=True)

    total_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False)
    platform = Column(String(20), nullable=False, comment="gateway/in_app/cash")
    payment_status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending/paid/refunded/failed"
    )
    processor_payment_reference = Column(String(200), nullable=True, comment="Processor payment id; null for cash")

    marketplace_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    processor_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    tax_withholding_a = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    tax_withholding_b = Column(Numeric(precision=15, scale=2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_event_status", "event_id", "payment_status"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id='{self.id}', event_id='{self.event_id}', "
            f"platform='{self.platform}', status='{self.payment_status}')>"
        )


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(64),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ticket_type_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, default=0)

    order = relationship("OrderModel", back_populates="items")


class RefundModel(Base):
    """
    One refund per order (unique order_id). The primary key is the
    processor idempotency key and is never regenerated.
    """
    __tablename__ = "refunds"

    id = Column(String(64), primary_key=True, comment="Refund id, also the idempotency key")
    order_id = Column(
        String(64),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_id = Column(String(64), nullable=False, index=True)

    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False)
    reason = Column(String(50), nullable=False, default="event_cancelled")
    requested_by = Column(String(64), nullable=False)

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending/processing/completed/failed"
    )
    processor_payment_reference = Column(String(200), nullable=True)
    processor_refund_reference = Column(String(200), nullable=True, index=True)
    failure_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=0, comment="Optimistic lock counter")

    fee_breakdown = Column(JSON, nullable=True, comment="Fees absorbed by the organization")
    attempts = Column(JSON, nullable=False, default=list, comment="Append-only attempt log")

    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_refunds_order_id"),
        Index("ix_refunds_event_status", "event_id", "status"),
    )

    def __repr__(self):
        return f"<RefundModel(id='{self.id}', order_id='{self.order_id}', status='{self.status}')>"


class EventCancellationModel(Base):
    __tablename__ = "event_cancellations"

    event_id = Column(String(64), primary_key=True)
    initiated_by = Column(String(64), nullable=False)
    reason = Column(Text, nullable=False)
    initiated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
