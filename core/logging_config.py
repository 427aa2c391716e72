"""
Structlog setup shared by the API, the Celery worker and SQLAlchemy.

Processor credentials travel through the refund flow as SecretStr values and
in request bodies/headers; `redact_secrets` masks them before any renderer
sees the event dict.
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


SECRET_KEYS = frozenset({"access_token", "authorization", "api_key", "secret", "token", "password"})
MASK = "***"


def mask_secrets(value: Any) -> Any:
    """Recursively replace values stored under secret-looking keys."""
    if isinstance(value, dict):
        return {k: (MASK if str(k).lower() in SECRET_KEYS else mask_secrets(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [mask_secrets(v) for v in value]
    return value


def redact_secrets(_logger, _method_name, event_dict: dict) -> dict:
    return mask_secrets(event_dict)


def _json_dumps(obj, default=None, **kwargs):
    return json.dumps(obj, ensure_ascii=False, default=default or str, **kwargs)


def get_renderer() -> Any:
    # JSON lines everywhere but local debug runs
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)
    return JSONRenderer(serializer=_json_dumps)


def configure_logging() -> None:
    pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_secrets,
    ]
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    # SQL echo is controlled by DATABASE__ECHO, not by the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # httpx logs every processor call at INFO, including URLs with payment ids
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
