"""
Exception to HTTP mapping and global exception handlers
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import traceback
import uuid
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode
from shared.codes.refund_codes import ProcessorCode
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException


class UnauthorizedException(BusinessException):
    """Missing or unusable caller identity"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
        )


_BUSINESS_STATUS = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_TYPE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,

    BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,

    BusinessCode.ORDER_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.EVENT_MISMATCH: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.ORDER_NOT_PAID: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.UNSUPPORTED_CHANNEL: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.REFUND_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.REFUND_CONFLICT: http_status.HTTP_409_CONFLICT,
    BusinessCode.REFUND_OUTCOME_UNKNOWN: http_status.HTTP_409_CONFLICT,
    BusinessCode.CANCELLATION_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CANCELLATION_ALREADY_INITIATED: http_status.HTTP_409_CONFLICT,

    BusinessCode.PERMISSION_ERROR: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,

    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.CONFIGURATION_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,

    BusinessCode.RATE_LIMIT_ERROR: http_status.HTTP_429_TOO_MANY_REQUESTS,
    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
}

_PROCESSOR_CODES = {int(c) for c in ProcessorCode}


def business_code_to_http_status(code: int) -> int:
    """Map a business code to an HTTP status (400 by default)."""
    if code in _PROCESSOR_CODES:
        return http_status.HTTP_502_BAD_GATEWAY
    try:
        return _BUSINESS_STATUS.get(BusinessCode(code), http_status.HTTP_400_BAD_REQUEST)
    except ValueError:
        return http_status.HTTP_400_BAD_REQUEST


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or uuid.uuid4().hex


def _envelope(request: Request, status_code: int, code: int, message: str, headers=None, **error) -> JSONResponse:
    body = error_response(code=code, message=message, request_id=_request_id(request), **error)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


_HTTP_TO_BUSINESS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    405: BusinessCode.PARAM_ERROR,
    429: BusinessCode.TOO_MANY_REQUESTS,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def register_exception_handlers(app: FastAPI):
    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        status_code = business_code_to_http_status(exc.code)
        if status_code >= 500:
            # processor outages and infrastructure faults; client mistakes stay quiet
            logger.error("business_exception", code=int(exc.code), error_type=exc.error_type, details=exc.details)
        headers = {"WWW-Authenticate": "Bearer"} if status_code == http_status.HTTP_401_UNAUTHORIZED else None
        return _envelope(
            request,
            status_code,
            exc.code,
            exc.message,
            headers=headers,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        return _envelope(
            request,
            http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            BusinessCode.PARAM_VALIDATION_ERROR,
            f"Validation failed: {first.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": [{k: e[k] for k in ("loc", "msg", "type") if k in e} for e in errors]},
            field=".".join(str(loc) for loc in first.get("loc", [])[1:]) or None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(
            request,
            exc.status_code,
            _HTTP_TO_BUSINESS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            str(exc.detail),
            headers=getattr(exc, "headers", None),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_exception", error_type=type(exc).__name__, exc_info=True)
        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        return _envelope(
            request,
            http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            BusinessCode.SYSTEM_ERROR,
            "Internal server error",
            error_type="SystemError",
            details=details,
        )
