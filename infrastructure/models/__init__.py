"""Infrastructure models package exports."""
from .base import Base, metadata
from .ledger import EventCancellationModel, OrderItemModel, OrderModel, RefundModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "RefundModel",
    "EventCancellationModel",
]
