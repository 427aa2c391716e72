"""Domain-level business exceptions shared by the domain and infrastructure layers.

The core layer only maps these to transport responses; the domain never
imports from core.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """Base class for business errors"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class EventMismatchException(BusinessException):
    def __init__(self, order_id: str, expected_event_id: str):
        super().__init__(
            code=BusinessCode.EVENT_MISMATCH,
            message="Order does not belong to this event",
            error_type="EventMismatch",
            details={"order_id": order_id, "event_id": expected_event_id},
        )


class OrderNotPaidException(BusinessException):
    def __init__(self, order_id: str, status: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_PAID,
            message=f"Can only refund paid orders. Current status: {status}",
            error_type="OrderNotPaid",
            details={"order_id": order_id, "payment_status": status},
        )


class UnsupportedChannelException(BusinessException):
    def __init__(self, order_id: str, platform: str, hint: Optional[str] = None):
        details = {"order_id": order_id, "platform": platform}
        if hint:
            details["hint"] = hint
        super().__init__(
            code=BusinessCode.UNSUPPORTED_CHANNEL,
            message=f"Refunds for platform '{platform}' are not handled by this operation",
            error_type="UnsupportedChannel",
            details=details,
            field="platform",
        )


class NoMarketplaceCredentialException(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=BusinessCode.CONFIGURATION_ERROR,
            message="Marketplace processor credential is not configured",
            error_type="NoMarketplaceCredential",
            details={"provider": provider},
        )


class RefundNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.REFUND_NOT_FOUND,
            message="Refund not found",
            error_type="RefundNotFound",
            details={"order_id": order_id},
        )


class RefundConflictException(BusinessException):
    """Optimistic update kept losing against concurrent writers."""

    def __init__(self, entity: str, entity_id: str, attempts: int):
        super().__init__(
            code=BusinessCode.REFUND_CONFLICT,
            message=f"Concurrent update conflict on {entity} {entity_id}",
            error_type="RefundConflict",
            details={"entity": entity, "id": entity_id, "attempts": attempts},
        )


class RefundOutcomeUnknownException(BusinessException):
    def __init__(self, refund_id: str, reason: str):
        super().__init__(
            code=BusinessCode.REFUND_OUTCOME_UNKNOWN,
            message="Previous refund attempt has an unknown outcome and could not be reconciled",
            error_type="RefundOutcomeUnknown",
            details={"refund_id": refund_id, "reason": reason},
        )


class CancellationNotFoundException(BusinessException):
    def __init__(self, event_id: str):
        super().__init__(
            code=BusinessCode.CANCELLATION_NOT_FOUND,
            message="Event has no cancellation in progress",
            error_type="CancellationNotFound",
            details={"event_id": event_id},
        )


class CancellationAlreadyInitiatedException(BusinessException):
    def __init__(self, event_id: str):
        super().__init__(
            code=BusinessCode.CANCELLATION_ALREADY_INITIATED,
            message="Event is already cancelled or cancellation is pending",
            error_type="CancellationAlreadyInitiated",
            details={"event_id": event_id},
        )


class StaleStateError(Exception):
    """Raised by ledger repositories when a conditional update finds an unexpected prior state."""

    def __init__(self, entity: str, entity_id: str, expected: str, actual: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"{entity} {entity_id}: expected status {expected}, found {actual}")
