"""
Exceptions for payment providers mapped to the unified PaymentGatewayException.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import PaymentGatewayException
from shared.codes.payment_codes import PaymentCode


class PaymentDeclinedError(PaymentGatewayException):
    """Processor answered and refused the charge or refund (not retried in-call)."""

    def __init__(self, message: str, *, provider: str, raw_response: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            raw_response=raw_response,
            code=PaymentCode.DECLINED,
            error_type="PaymentDeclined",
        )


class PaymentRecoverableError(PaymentGatewayException):
    """Transport failure or 5xx; a later record-level retry may succeed."""

    def __init__(self, message: str, *, provider: str, raw_response: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            raw_response=raw_response,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="PaymentRecoverableError",
        )


class PaymentRateLimitedError(PaymentRecoverableError):
    def __init__(self, message: str, *, provider: str, raw_response: Optional[dict] = None):
        super().__init__(message, provider=provider, raw_response=raw_response)
        self.code = PaymentCode.RATE_LIMITED
        self.error_type = "PaymentRateLimited"


class PaymentTimeoutError(PaymentRecoverableError):
    def __init__(self, message: str, *, provider: str):
        super().__init__(message, provider=provider)
        self.code = PaymentCode.TIMEOUT
        self.error_type = "PaymentTimeout"
