from .logging import LoggingMiddleware
from .request_id import ACTOR_HEADER, REQUEST_ID_HEADER, RequestIDMiddleware

__all__ = ["ACTOR_HEADER", "LoggingMiddleware", "REQUEST_ID_HEADER", "RequestIDMiddleware"]
