"""
支付领域实体 - PaymentRecord 聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import (
    DomainValidationException,
    InvalidPaymentStateException,
)


CENT = Decimal("0.01")

SUPPORTED_CURRENCIES = {"USD", "EUR", "GBP", "CAD", "AUD"}


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"           # 待处理
    PROCESSING = "processing"     # 网关处理中
    COMPLETED = "completed"       # 支付成功
    FAILED = "failed"             # 支付失败（可重试或已耗尽）
    REFUNDED = "refunded"         # 已退款（终态）


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"


class PartyRole(str, Enum):
    BUSINESS = "business"
    RIDER = "rider"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentRecord:
    """
    支付记录聚合根 - 一次交付对应的一笔支付

    业务规则：
    1. 每个 offer 只能有一条支付记录（仓储层唯一索引保证）
    2. 金额必须大于0，且 platform_fee + rider_earnings == total_amount
    3. 状态转换必须遵循状态机
    4. refunded 以及重试耗尽的 failed 为终态
    """

    id: Optional[int]
    offer_id: int
    business_id: int
    rider_id: int
    total_amount: Decimal
    platform_fee: Decimal
    rider_earnings: Decimal
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method_details: dict = field(default_factory=dict)

    # 网关成功后才会写入
    transaction_id: Optional[str] = None

    # 重试相关
    retry_count: int = 0
    max_retries: int = 5
    retry_delay: int = 30 * 60  # seconds
    failure_reason: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None

    # 退款相关
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_at: Optional[datetime] = None

    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        """初始化后验证"""
        self.status = PaymentStatus(self.status)
        self.payment_method = PaymentMethod(self.payment_method)
        self._validate_amounts()
        self._validate_currency()
        self._normalize_timestamps()
        if self.metadata is None:
            self.metadata = {}
        if self.payment_method_details is None:
            self.payment_method_details = {}
        if self.max_retries < 0 or self.retry_count < 0:
            raise DomainValidationException("Retry counters must be non-negative", field="retry_count")

    def _validate_amounts(self) -> None:
        """业务规则：金额大于0，费用拆分精确相加"""
        if self.total_amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be greater than 0: {self.total_amount}",
                field="total_amount",
            )
        if self.platform_fee < 0 or self.rider_earnings < 0:
            raise DomainValidationException("Fee split must be non-negative", field="platform_fee")
        if self.platform_fee + self.rider_earnings != self.total_amount:
            raise DomainValidationException(
                f"Fee split {self.platform_fee} + {self.rider_earnings} does not add up to {self.total_amount}",
                field="platform_fee",
            )

    def _validate_currency(self) -> None:
        if not self.currency or self.currency.upper() not in SUPPORTED_CURRENCIES:
            raise DomainValidationException(f"Unsupported currency: {self.currency}", field="currency")
        self.currency = self.currency.upper()

    def _normalize_timestamps(self) -> None:
        """规范化所有时间戳为 UTC"""
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.processed_at = _ensure_utc(self.processed_at)
        self.next_retry_at = _ensure_utc(self.next_retry_at)
        self.last_attempt_at = _ensure_utc(self.last_attempt_at)
        self.refunded_at = _ensure_utc(self.refunded_at)

    def _illegal(self, action: str) -> InvalidPaymentStateException:
        return InvalidPaymentStateException(
            f"Cannot {action} a payment in status {self.status.value}",
            current_status=self.status.value,
            details={"payment_id": self.id, "retry_count": self.retry_count, "max_retries": self.max_retries},
        )

    def is_terminal(self) -> bool:
        """refunded 与重试耗尽的 failed 不允许任何后续转换"""
        if self.status == PaymentStatus.REFUNDED:
            return True
        return self.status == PaymentStatus.FAILED and self.retry_count >= self.max_retries

    def can_retry(self) -> bool:
        return self.status == PaymentStatus.FAILED and self.retry_count < self.max_retries

    def can_refund(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    def mark_processing(self) -> None:
        """pending -> processing（网关调用开始）"""
        if self.status != PaymentStatus.PENDING:
            raise self._illegal("start processing")
        now = _now()
        self.status = PaymentStatus.PROCESSING
        self.last_attempt_at = now
        self.updated_at = now

    def start_retry(self) -> None:
        """
        failed -> processing，消耗一次重试机会

        业务规则：只有 retry_count < max_retries 的失败记录可以重试
        """
        if not self.can_retry():
            raise self._illegal("retry")
        now = _now()
        self.retry_count += 1
        self.status = PaymentStatus.PROCESSING
        self.failure_reason = None
        self.next_retry_at = None
        self.last_attempt_at = now
        self.updated_at = now

    def mark_completed(self, transaction_id: str, gateway_response: Optional[dict] = None) -> None:
        """processing -> completed"""
        if self.status != PaymentStatus.PROCESSING:
            raise self._illegal("complete")
        now = _now()
        self.status = PaymentStatus.COMPLETED
        self.transaction_id = transaction_id
        self.processed_at = now
        self.updated_at = now
        self.failure_reason = None
        self.next_retry_at = None
        if gateway_response is not None:
            self.metadata["gateway_response"] = gateway_response
        if self.created_at is not None:
            self.metadata["processing_time_ms"] = int((now - self.created_at).total_seconds() * 1000)

    def mark_failed(self, reason: str, gateway_response: Optional[dict] = None) -> None:
        """processing -> failed（不修改重试计数）"""
        if self.status != PaymentStatus.PROCESSING:
            raise self._illegal("fail")
        now = _now()
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.updated_at = now
        if gateway_response is not None:
            self.metadata["gateway_response"] = gateway_response
        self.next_retry_at = now + timedelta(seconds=self.retry_delay) if self.can_retry() else None

    def process_refund(self, amount: Optional[Decimal], reason: Optional[str], refund_id: Optional[str] = None) -> None:
        """
        completed -> refunded

        业务规则：
        1. 只有成功的支付才能退款
        2. 退款金额默认全额，不能超过支付金额
        """
        if not self.can_refund():
            raise self._illegal("refund")
        refund_amount = self.validate_refund_amount(amount)
        now = _now()
        self.status = PaymentStatus.REFUNDED
        self.refund_amount = refund_amount
        self.refund_reason = reason
        self.refund_id = refund_id
        self.refunded_at = now
        self.updated_at = now

    def validate_refund_amount(self, amount: Optional[Decimal]) -> Decimal:
        if amount is None:
            return self.total_amount
        amount = Decimal(str(amount))
        if amount <= 0:
            raise DomainValidationException(f"Refund amount must be greater than 0: {amount}", field="amount")
        if amount != amount.quantize(CENT):
            raise DomainValidationException(f"Refund amount has sub-cent precision: {amount}", field="amount")
        if amount > self.total_amount:
            raise DomainValidationException(
                f"Refund amount {amount} exceeds payment amount {self.total_amount}",
                field="amount",
            )
        return amount

    def apply_status(
        self,
        status: PaymentStatus,
        *,
        reason: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> bool:
        """
        Low-level status override used for gateway callbacks.

        Never leaves a terminal state and never enters ``refunded`` (refunds
        carry amounts and ids and go through process_refund). A completed
        payment only leaves through process_refund, and a failed one only
        re-enters processing through start_retry. Returns True when the status
        actually changed.
        """
        status = PaymentStatus(status)
        if status == self.status:
            return False
        if self.is_terminal():
            raise self._illegal(f"move to {status.value}")
        if status == PaymentStatus.REFUNDED:
            raise self._illegal("mark refunded without a refund on")
        # 已完成的支付不可回退，否则重试任务会再次扣款
        if self.status == PaymentStatus.COMPLETED:
            raise self._illegal(f"move to {status.value}")
        # failed 只能经 start_retry 回到 processing，保证重试计数与上限
        if self.status == PaymentStatus.FAILED and status != PaymentStatus.COMPLETED:
            raise self._illegal(f"move to {status.value}")

        now = _now()
        self.status = status
        self.updated_at = now
        if status == PaymentStatus.PROCESSING:
            self.last_attempt_at = now
        elif status == PaymentStatus.COMPLETED:
            self.processed_at = now
            self.failure_reason = None
            self.next_retry_at = None
            if transaction_id:
                self.transaction_id = transaction_id
            if self.created_at is not None:
                self.metadata["processing_time_ms"] = int((now - self.created_at).total_seconds() * 1000)
        elif status == PaymentStatus.FAILED:
            self.failure_reason = reason or self.failure_reason
            self.next_retry_at = now + timedelta(seconds=self.retry_delay) if self.can_retry() else None
        return True

    def update_metadata(self, key: str, value: Any) -> None:
        """更新元数据"""
        if self.metadata is None:
            self.metadata = {}
        self.metadata[key] = value
        self.updated_at = _now()
