"""
支付领域服务 - 处理跨聚合的支付业务逻辑
"""
from decimal import Decimal
from datetime import datetime, timezone
from typing import List, Optional

from .entity import PaymentMethod, PaymentRecord, PaymentStatus
from .events import PaymentCompleted, PaymentEvent, PaymentFailed, PaymentRefunded
from .fees import FeeBreakdown
from .repository import PaymentRecordRepository
from domain.common.exceptions import (
    OfferNotFoundException,
    PaymentAlreadyExistsException,
    PaymentNotFoundException,
)
from domain.offer.entity import Offer, OfferStatus
from domain.offer.repository import OfferRepository


class PaymentDomainService:
    """
    支付领域服务 - 编排 PaymentRecord 与 Offer

    职责：
    1. 创建支付时的业务校验（offer 状态、唯一性）
    2. 以条件更新落库状态转换，防止并发重复处理
    3. 支付成功后完成 offer
    4. 产生领域事件
    """

    def __init__(
        self,
        payment_repository: PaymentRecordRepository,
        offer_repository: OfferRepository,
    ):
        self.payment_repository = payment_repository
        self.offer_repository = offer_repository
        self.events: List[PaymentEvent] = []  # 领域事件收集

    async def get_payment(self, payment_id: int) -> PaymentRecord:
        record = await self.payment_repository.get_by_id(payment_id)
        if not record:
            raise PaymentNotFoundException(payment_id)
        return record

    async def get_offer(self, offer_id: int) -> Offer:
        offer = await self.offer_repository.get_by_id(offer_id)
        if not offer:
            raise OfferNotFoundException(offer_id)
        return offer

    async def create_payment(
        self,
        offer: Offer,
        fees: FeeBreakdown,
        *,
        currency: str,
        payment_method: PaymentMethod,
        payment_method_details: Optional[dict] = None,
        metadata: Optional[dict] = None,
        max_retries: int = 5,
        retry_delay: int = 30 * 60,
    ) -> PaymentRecord:
        """
        创建 pending 支付记录

        业务规则：
        1. 每个 offer 只能有一条支付记录（先于状态校验，已支付的 offer 返回冲突）
        2. offer 必须已送达
        """
        if await self.payment_repository.exists_by_offer_id(offer.id):
            raise PaymentAlreadyExistsException(offer.id)
        offer.ensure_payable()

        now = datetime.now(timezone.utc)
        record = PaymentRecord(
            id=None,
            offer_id=offer.id,
            business_id=offer.business_id,
            rider_id=offer.rider_id,
            total_amount=fees.total_amount,
            platform_fee=fees.platform_fee,
            rider_earnings=fees.rider_earnings,
            currency=currency,
            payment_method=payment_method,
            payment_method_details=payment_method_details or {},
            max_retries=max_retries,
            retry_delay=retry_delay,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        return await self.payment_repository.create(record)

    async def begin_processing(self, record: PaymentRecord) -> PaymentRecord:
        record.mark_processing()
        return await self.payment_repository.update(record, expected_status=PaymentStatus.PENDING)

    async def claim_retry(self, payment_id: int) -> PaymentRecord:
        """
        认领一次重试：failed -> processing

        条件更新要求数据库中仍为 failed 且 retry_count 未变，
        两个并发的重试只有一个能成功。
        """
        record = await self.get_payment(payment_id)
        expected_count = record.retry_count
        record.start_retry()
        return await self.payment_repository.update(
            record,
            expected_status=PaymentStatus.FAILED,
            expected_retry_count=expected_count,
        )

    async def complete_payment(
        self,
        payment_id: int,
        transaction_id: str,
        gateway_response: Optional[dict] = None,
    ) -> PaymentRecord:
        record = await self.get_payment(payment_id)
        record.mark_completed(transaction_id, gateway_response)
        updated = await self.payment_repository.update(record, expected_status=PaymentStatus.PROCESSING)
        await self._complete_offer(updated.offer_id)
        self.events.append(self._event(PaymentCompleted, updated, transaction_id=transaction_id))
        return updated

    async def fail_payment(
        self,
        payment_id: int,
        reason: str,
        gateway_response: Optional[dict] = None,
    ) -> PaymentRecord:
        record = await self.get_payment(payment_id)
        record.mark_failed(reason, gateway_response)
        updated = await self.payment_repository.update(record, expected_status=PaymentStatus.PROCESSING)
        self.events.append(self._failed_event(updated))
        return updated

    async def refund_payment(
        self,
        payment_id: int,
        amount: Decimal,
        reason: Optional[str],
        refund_id: Optional[str] = None,
    ) -> PaymentRecord:
        """completed -> refunded，条件更新保证同一笔支付只退款一次"""
        record = await self.get_payment(payment_id)
        record.process_refund(amount, reason, refund_id)
        updated = await self.payment_repository.update(record, expected_status=PaymentStatus.COMPLETED)
        self.events.append(
            self._event(
                PaymentRefunded,
                updated,
                refund_amount=updated.refund_amount,
                refund_id=refund_id,
                reason=reason,
            )
        )
        return updated

    async def apply_status(
        self,
        payment_id: int,
        status: PaymentStatus,
        metadata: Optional[dict] = None,
    ) -> PaymentRecord:
        """
        网关回调使用的状态覆盖

        metadata 中的 gateway_response 合并进记录元数据；
        reason/transaction_id 分别写入失败原因与交易号。
        """
        metadata = dict(metadata or {})
        record = await self.get_payment(payment_id)
        previous = record.status
        changed = record.apply_status(
            status,
            reason=metadata.get("reason"),
            transaction_id=metadata.get("transaction_id"),
        )
        if "gateway_response" in metadata:
            record.update_metadata("gateway_response", metadata["gateway_response"])
        if not changed and "gateway_response" not in metadata:
            return record

        updated = await self.payment_repository.update(record, expected_status=previous)
        if changed and updated.status == PaymentStatus.COMPLETED:
            await self._complete_offer(updated.offer_id)
            self.events.append(self._event(PaymentCompleted, updated, transaction_id=updated.transaction_id))
        elif changed and updated.status == PaymentStatus.FAILED:
            self.events.append(self._failed_event(updated))
        return updated

    async def _complete_offer(self, offer_id: int) -> None:
        offer = await self.get_offer(offer_id)
        if offer.status == OfferStatus.DELIVERED:
            offer.mark_completed()
            await self.offer_repository.update(offer)

    def _failed_event(self, record: PaymentRecord) -> PaymentFailed:
        return self._event(
            PaymentFailed,
            record,
            reason=record.failure_reason,
            retry_count=record.retry_count,
            max_retries=record.max_retries,
            final=not record.can_retry(),
        )

    @staticmethod
    def _event(event_cls, record: PaymentRecord, **extra) -> PaymentEvent:
        return event_cls(
            payment_id=record.id,
            offer_id=record.offer_id,
            business_id=record.business_id,
            rider_id=record.rider_id,
            total_amount=record.total_amount,
            rider_earnings=record.rider_earnings,
            currency=record.currency,
            **extra,
        )

    def clear_events(self) -> List[PaymentEvent]:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
