"""
Processor specific codes and provider refund status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class ProcessorCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider refund status -> internal outcome ("completed" | "processing" | "failed")
PROVIDER_REFUND_STATUS_TO_INTERNAL = {
    "mercadopago": {
        "approved": "completed",
        "authorized": "processing",
        "in_process": "processing",
        "rejected": "failed",
        "cancelled": "failed",
    },
    "stripe": {
        "succeeded": "completed",
        "pending": "processing",
        "requires_action": "processing",
        "failed": "failed",
        "canceled": "failed",
    },
}
