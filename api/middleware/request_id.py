"""
Correlation ids for API requests.

The id comes from `X-Request-ID` when the caller sends one and is generated
otherwise. It is stored on `request.state` for the error envelope, bound into
structlog together with the acting organizer, and echoed on the response.
"""
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_ID_HEADER = "X-Request-ID"
ACTOR_HEADER = "X-User-Id"


def client_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # first hop is the original client
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        context = {
            "request_id": request_id,
            "client_ip": client_address(request),
            "method": request.method,
            "path": request.url.path,
        }
        actor = request.headers.get(ACTOR_HEADER)
        if actor:
            context["actor_id"] = actor
        structlog.contextvars.bind_contextvars(**context)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
