"""
Access logging for the refund API.

Each request gets a start/finish pair of log lines with its duration. The
finish line also carries the event and order ids taken from the resolved path.
"""
import json
import time
from typing import Any, Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger, mask_secrets


logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
CONTEXT_PARAMS = ("event_id", "order_id")


class LoggingMiddleware(BaseHTTPMiddleware):

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_bodies: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.body_limit: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = {"query": dict(request.query_params)} if request.query_params else {}
        body = await self._body_for_log(request)
        if body is not None:
            fields["body"] = body
        logger.info("request_started", **fields)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration_ms=_elapsed_ms(started),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        # path params are resolved only after routing
        self._bind_path_context(request)
        elapsed = _elapsed_ms(started)
        response.headers["X-Process-Time"] = f"{elapsed / 1000:.3f}"

        status = response.status_code
        level = logger.info if status < 400 else logger.warning if status < 500 else logger.error
        level("request_finished", status_code=status, duration_ms=elapsed)
        return response

    @staticmethod
    def _bind_path_context(request: Request) -> None:
        params = request.scope.get("path_params") or {}
        bound = {k: params[k] for k in CONTEXT_PARAMS if k in params}
        if bound:
            structlog.contextvars.bind_contextvars(**bound)

    def _wants_body(self, request: Request) -> bool:
        # X-Log-Body: true/false overrides the configured default
        flag = (request.headers.get("X-Log-Body") or "").lower()
        if flag in {"true", "1", "yes"}:
            return True
        if flag in {"false", "0", "no"}:
            return False
        return bool(self.log_bodies and settings.DEBUG)

    async def _body_for_log(self, request: Request) -> Optional[Any]:
        if request.method not in BODY_METHODS or not self._wants_body(request):
            return None
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.body_limit].decode("utf-8", errors="ignore")
        if "application/json" not in request.headers.get("content-type", "").lower():
            return text
        try:
            return mask_secrets(json.loads(text))
        except ValueError:
            # truncated JSON
            return text


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
