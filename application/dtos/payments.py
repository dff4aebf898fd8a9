"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.types import condecimal

from application.dtos.base import DTOBase, Pagination
from core.config import settings
from domain.payment.entity import SUPPORTED_CURRENCIES, PaymentMethod, PaymentStatus


Money = condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in SUPPORTED_CURRENCIES:
        raise ValueError("unsupported currency")
    return u


class PaymentMethodDetails(DTOBase):
    last4: Optional[str] = Field(None, pattern=r"^\d{4}$")
    brand: Optional[str] = None
    expiry_month: Optional[int] = Field(None, ge=1, le=12)
    expiry_year: Optional[int] = Field(None, ge=2000)


class ProcessPaymentRequest(DTOBase):
    """process_payment 的入参"""
    payment_method: PaymentMethod
    # 未指定时依次取 offer 币种与 PAYMENT__DEFAULT_CURRENCY
    currency: Optional[str] = None
    payment_method_details: Optional[PaymentMethodDetails] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    source: Literal["web", "mobile", "api"] = "web"

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _validate_currency(v) if v is not None else None


class RefundPaymentRequest(DTOBase):
    amount: Optional[Money] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(None, max_length=500)


class GatewayChargeRequest(DTOBase):
    payment_id: int
    offer_id: int
    amount: Money  # type: ignore[valid-type]
    currency: str
    payment_method: PaymentMethod
    payment_method_details: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class GatewayChargeResult(DTOBase):
    success: bool
    transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    fees: Optional[Decimal] = None
    status: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


class GatewayRefundRequest(DTOBase):
    payment_id: int
    transaction_id: Optional[str] = None
    amount: Money  # type: ignore[valid-type]
    currency: str
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None


class GatewayRefundResult(DTOBase):
    success: bool
    refund_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    raw: Optional[dict[str, Any]] = None


class FeeBreakdownDTO(DTOBase):
    total_amount: Decimal
    platform_fee: Decimal
    rider_earnings: Decimal
    fee_percentage: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentRecordDTO(DTOBase):
    id: int
    offer_id: int
    business_id: int
    rider_id: int
    total_amount: Decimal
    platform_fee: Decimal
    rider_earnings: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_method_details: dict[str, Any] = Field(default_factory=dict)
    status: PaymentStatus
    transaction_id: Optional[str] = None
    retry_count: int
    max_retries: int
    failure_reason: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentHistoryFilters(DTOBase):
    page: int = Field(1, ge=1)
    limit: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE, ge=1)
    status: Optional[PaymentStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, v: int) -> int:
        return min(v, settings.MAX_PAGE_SIZE)

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class PaymentHistoryPage(DTOBase):
    payments: List[PaymentRecordDTO]
    pagination: Pagination


class PaymentStats(DTOBase):
    total_payments: int = 0
    total_amount: Decimal = Decimal("0.00")
    completed_payments: int = 0
    completed_amount: Decimal = Decimal("0.00")
    pending_payments: int = 0
    processing_payments: int = 0
    failed_payments: int = 0
    refunded_payments: int = 0
    refunded_amount: Decimal = Decimal("0.00")
    average_amount: Decimal = Decimal("0.00")
    # Riders only
    monthly_earnings: Optional[Decimal] = None
    monthly_deliveries: Optional[int] = None


class RetryError(DTOBase):
    payment_id: int
    error: str
    code: Optional[int] = None


class ScheduledRetryReport(DTOBase):
    processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: List[RetryError] = Field(default_factory=list)
