"""
Unified response envelope `{code, message, data, error}`
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


def to_utc_z(value: datetime) -> str:
    """ISO8601 in UTC with a trailing Z; naive values are taken as UTC"""
    ts = value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def _serialize_timestamp(self, timestamp: datetime) -> str:
        return to_utc_z(timestamp)


class Response(BaseModel, Generic[T]):
    """Every endpoint answers with this envelope; `code` 0 means success."""
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


def success_response(data: Any = None, message: str = "Success", code: int = BusinessCode.SUCCESS) -> Response:
    return Response(code=code, message=message, data=data)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    data: Any = None,
) -> Response:
    """
    Build an error envelope.

    `details` carries the structured context of the failure (order/refund ids,
    statuses, processor codes) and `field` the offending input, if any. `data`
    is set when the failure still produced a record the caller should see,
    such as a refund the processor rejected.
    """
    return Response(
        code=code,
        message=message,
        data=data,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )
