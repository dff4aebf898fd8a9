"""领域层业务异常定义，供领域、应用与基础设施使用。

Taxonomy used by the settlement core:
- NotFound: PaymentNotFoundException, OfferNotFoundException
- Conflict: PaymentAlreadyExistsException
- InvalidState: InvalidPaymentStateException
- GatewayError: PaymentGatewayException (and subclasses in infrastructure)
- Validation: DomainValidationException
"""
from __future__ import annotations

from typing import Any, Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, payment_id: Any):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Payment not found: {payment_id}",
            error_type="PaymentNotFound",
            details={"payment_id": payment_id},
            message_key="payment.not_found",
        )


class OfferNotFoundException(BusinessException):
    def __init__(self, offer_id: Any):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Offer not found: {offer_id}",
            error_type="OfferNotFound",
            details={"offer_id": offer_id},
            message_key="offer.not_found",
        )


class PaymentAlreadyExistsException(BusinessException):
    def __init__(self, offer_id: Any):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"Payment already exists for offer: {offer_id}",
            error_type="PaymentAlreadyExists",
            details={"offer_id": offer_id},
            message_key="payment.already_exists",
        )


class InvalidPaymentStateException(BusinessException):
    """Operation is not legal for the record's (or offer's) current status."""

    def __init__(self, message: str, *, current_status: Optional[str] = None, details: Optional[dict] = None):
        merged = dict(details or {})
        if current_status is not None:
            merged["current_status"] = current_status
        super().__init__(
            code=BusinessCode.INVALID_STATE,
            message=message,
            error_type="InvalidPaymentState",
            details=merged or None,
            field="status",
            message_key="payment.invalid_state",
        )


class PaymentGatewayException(BusinessException):
    """Processor declined or errored; carries the raw response when available."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        raw_response: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "PaymentGatewayError",
    ):
        self.provider = provider
        self.raw_response = raw_response
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details={"provider": provider, "raw_response": raw_response},
        )
