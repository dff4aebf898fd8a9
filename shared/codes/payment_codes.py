"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    """Processor and network failures (6xxxx). Recoverable codes, timeouts included, may succeed later."""

    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    DECLINED = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider→internal status mapping (extend per provider)
PROVIDER_STATUS_TO_INTERNAL = {
    "http": {
        "succeeded": "completed",
        "success": "completed",
        "paid": "completed",
        "processing": "processing",
        "pending": "processing",
        "requires_action": "processing",
        "declined": "failed",
        "failed": "failed",
        "canceled": "failed",
    },
    "simulated": {
        "succeeded": "completed",
        "failed": "failed",
    },
}
