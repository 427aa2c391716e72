"""Ledger domain exports."""
from .entity import (
    AttemptOutcome,
    EventCancellation,
    Order,
    OrderItem,
    OrderPaymentStatus,
    Platform,
    Refund,
    RefundAttempt,
    RefundReason,
    RefundStatus,
)
from .netting import ChannelTotals, FinancialSummary, compute_financial_summary
from .repository import CancellationRepository, OrderRepository, RefundRepository

__all__ = [
    "AttemptOutcome",
    "EventCancellation",
    "Order",
    "OrderItem",
    "OrderPaymentStatus",
    "Platform",
    "Refund",
    "RefundAttempt",
    "RefundReason",
    "RefundStatus",
    "ChannelTotals",
    "FinancialSummary",
    "compute_financial_summary",
    "CancellationRepository",
    "OrderRepository",
    "RefundRepository",
]
