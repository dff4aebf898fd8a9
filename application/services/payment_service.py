"""
Application service orchestrating payment use-cases.

This class depends only on the application ports (PaymentGateway,
NotificationSink), DTOs and the unit of work. Gateway and sink
implementations are provided by infrastructure and must be injected from the
composition root (tasks/bootstrap), keeping dependencies one-way.

Every use-case follows the same shape: validate and mutate inside a unit of
work, call the gateway between transactions, persist the outcome in a new
unit of work, then dispatch notifications.
"""
from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from structlog.contextvars import bound_contextvars

from application.dtos.base import Pagination, parse_dto
from application.dtos.payments import (
    FeeBreakdownDTO,
    GatewayChargeRequest,
    GatewayChargeResult,
    GatewayRefundRequest,
    GatewayRefundResult,
    PaymentHistoryFilters,
    PaymentHistoryPage,
    PaymentRecordDTO,
    PaymentStats,
    ProcessPaymentRequest,
    RefundPaymentRequest,
    RetryError,
    ScheduledRetryReport,
)
from application.ports.notification import NotificationSink
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_notifications import build_notifications
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import (
    BusinessException,
    DomainValidationException,
    InvalidPaymentStateException,
    PaymentGatewayException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import CENT, PartyRole, PaymentRecord, PaymentStatus
from domain.payment.events import PaymentEvent
from domain.payment.fees import Amount, FeeCalculator
from domain.payment.service import PaymentDomainService
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _charge_idempotency_key(record: PaymentRecord) -> str:
    # Stable per attempt: a replayed attempt maps to the same gateway charge
    base = f"charge|{record.offer_id}|{record.id}|{record.retry_count}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def _refund_idempotency_key(record: PaymentRecord, amount: Decimal) -> str:
    base = f"refund|{record.offer_id}|{record.id}|{record.transaction_id or ''}|{amount}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def _parse_role(role: Union[PartyRole, str]) -> PartyRole:
    try:
        return PartyRole(role)
    except ValueError:
        raise DomainValidationException(f"Unknown role: {role}", field="role")


class PaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        notifications: NotificationSink,
        *,
        fee_calculator: Optional[FeeCalculator] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[int] = None,
        gateway_timeout: Optional[float] = None,
        notification_timeout: Optional[float] = None,
        sweep_batch_size: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.notifications = notifications
        self.fee_calculator = fee_calculator or FeeCalculator(
            payment_settings.fees.percentage,
            payment_settings.fees.minimum_fee,
        )
        self._max_retries = payment_settings.retries.max_retries if max_retries is None else max_retries
        self._retry_delay = payment_settings.retries.retry_delay_seconds if retry_delay is None else retry_delay
        self._gateway_timeout = gateway_timeout or payment_settings.timeouts.total
        self._notification_timeout = notification_timeout or settings.notifications.timeout_seconds
        self._sweep_batch_size = sweep_batch_size or payment_settings.retries.sweep_batch_size
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------ commands

    async def process_payment(
        self,
        offer_id: int,
        payment_data: Union[ProcessPaymentRequest, dict],
    ) -> PaymentRecordDTO:
        """
        Settle a delivered offer.

        Raises NotFound/InvalidState/Conflict/Validation before any gateway
        call. A gateway failure leaves the record ``failed`` and is re-raised.
        """
        request = parse_dto(ProcessPaymentRequest, payment_data)
        async with self._uow_factory() as uow:
            domain = PaymentDomainService(uow.payment_repository, uow.offer_repository)
            offer = await domain.get_offer(offer_id)
            fees = self.fee_calculator.calculate_fees(offer.amount)
            record = await domain.create_payment(
                offer,
                fees,
                currency=request.currency or offer.currency or payment_settings.default_currency,
                payment_method=request.payment_method,
                payment_method_details=(
                    request.payment_method_details.model_dump(exclude_none=True)
                    if request.payment_method_details else {}
                ),
                metadata={
                    "source": request.source,
                    "ip_address": request.ip_address,
                    "user_agent": request.user_agent,
                },
                max_retries=self._max_retries,
                retry_delay=self._retry_delay,
            )
            record = await domain.begin_processing(record)

        logger.info(
            "payment_created",
            payment_id=record.id,
            offer_id=record.offer_id,
            amount=str(record.total_amount),
            platform_fee=str(record.platform_fee),
            currency=record.currency,
        )
        return await self._charge(record)

    async def retry_payment(self, payment_id: int) -> PaymentRecordDTO:
        """Retry a failed payment; the claim is atomic so one record never runs twice at once."""
        async with self._uow_factory() as uow:
            domain = PaymentDomainService(uow.payment_repository, uow.offer_repository)
            record = await domain.claim_retry(payment_id)

        logger.info(
            "payment_retry_started",
            payment_id=record.id,
            retry_count=record.retry_count,
            max_retries=record.max_retries,
        )
        return await self._charge(record)

    async def refund_payment(
        self,
        payment_id: int,
        amount: Optional[Amount] = None,
        reason: Optional[str] = None,
    ) -> PaymentRecordDTO:
        request = parse_dto(RefundPaymentRequest, {"amount": amount, "reason": reason})
        async with self._uow_factory(readonly=True) as uow:
            record = await PaymentDomainService(uow.payment_repository, uow.offer_repository).get_payment(payment_id)

        if not record.can_refund():
            raise InvalidPaymentStateException(
                f"Only completed payments can be refunded, payment {payment_id} is {record.status.value}",
                current_status=record.status.value,
                details={"payment_id": payment_id},
            )
        refund_amount = record.validate_refund_amount(request.amount)

        logger.info(
            "payment_refund_request",
            payment_id=payment_id,
            amount=str(refund_amount),
            provider=self.gateway.provider,
        )
        result: GatewayRefundResult = await self._call_gateway(
            self.gateway.process_refund(
                GatewayRefundRequest(
                    payment_id=record.id,
                    transaction_id=record.transaction_id,
                    amount=refund_amount,
                    currency=record.currency,
                    reason=request.reason,
                    idempotency_key=_refund_idempotency_key(record, refund_amount),
                )
            )
        )
        if not result.success:
            raise PaymentGatewayException(
                "Refund was declined by the payment gateway",
                provider=self.gateway.provider,
                raw_response=result.raw,
                code=PaymentCode.DECLINED,
            )

        async with self._uow_factory() as uow:
            domain = PaymentDomainService(uow.payment_repository, uow.offer_repository)
            updated = await domain.refund_payment(payment_id, refund_amount, request.reason, result.refund_id)
            events = domain.clear_events()

        logger.info(
            "payment_refunded",
            payment_id=payment_id,
            refund_id=result.refund_id,
            amount=str(refund_amount),
        )
        await self._notify(events)
        return PaymentRecordDTO.model_validate(updated)

    async def update_payment_status(
        self,
        payment_id: int,
        status: Union[PaymentStatus, str],
        metadata: Optional[dict] = None,
    ) -> PaymentRecordDTO:
        """Gateway callback hook. Notifies only on a change into completed/failed."""
        try:
            status = PaymentStatus(status)
        except ValueError:
            raise DomainValidationException(f"Unknown payment status: {status}", field="status")

        async with self._uow_factory() as uow:
            domain = PaymentDomainService(uow.payment_repository, uow.offer_repository)
            updated = await domain.apply_status(payment_id, status, metadata)
            events = domain.clear_events()

        logger.info("payment_status_updated", payment_id=payment_id, status=updated.status.value)
        await self._notify(events)
        return PaymentRecordDTO.model_validate(updated)

    async def process_scheduled_retries(self) -> ScheduledRetryReport:
        """
        Retry every due failed payment, one at a time.

        Per-record errors are collected in the report and never stop the sweep.
        """
        now = self._clock()
        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.payment_repository.list_retryable(now, limit=self._sweep_batch_size)

        report = ScheduledRetryReport()
        for candidate in candidates:
            report.processed += 1
            try:
                result = await self.retry_payment(candidate.id)
            except BusinessException as exc:
                report.failed += 1
                report.errors.append(RetryError(payment_id=candidate.id, error=exc.message, code=int(exc.code)))
                logger.warning(
                    "scheduled_retry_failed",
                    payment_id=candidate.id,
                    error=exc.message,
                    code=int(exc.code),
                )
                continue
            except Exception as exc:
                report.failed += 1
                report.errors.append(RetryError(payment_id=candidate.id, error=str(exc) or type(exc).__name__))
                logger.error("scheduled_retry_error", payment_id=candidate.id, exc_info=True)
                continue
            if result.status == PaymentStatus.COMPLETED:
                report.successful += 1

        logger.info(
            "scheduled_retries_processed",
            processed=report.processed,
            successful=report.successful,
            failed=report.failed,
        )
        return report

    # ------------------------------------------------------------------ queries

    def calculate_fees(self, amount: Amount) -> FeeBreakdownDTO:
        return FeeBreakdownDTO.model_validate(self.fee_calculator.calculate_fees(amount))

    async def get_payment(self, payment_id: int) -> PaymentRecordDTO:
        async with self._uow_factory(readonly=True) as uow:
            record = await PaymentDomainService(uow.payment_repository, uow.offer_repository).get_payment(payment_id)
            return PaymentRecordDTO.model_validate(record)

    async def get_payment_history(
        self,
        user_id: int,
        role: Union[PartyRole, str],
        filters: Union[PaymentHistoryFilters, dict, None] = None,
    ) -> PaymentHistoryPage:
        role = _parse_role(role)
        filters = parse_dto(PaymentHistoryFilters, filters)
        statuses = [filters.status] if filters.status else None
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.payment_repository
            total = await repo.count_by_party(
                role, user_id,
                statuses=statuses,
                start_date=filters.start_date,
                end_date=filters.end_date,
            )
            records = await repo.list_by_party(
                role, user_id,
                statuses=statuses,
                start_date=filters.start_date,
                end_date=filters.end_date,
                skip=(filters.page - 1) * filters.limit,
                limit=filters.limit,
            )
        return PaymentHistoryPage(
            payments=[PaymentRecordDTO.model_validate(r) for r in records],
            pagination=Pagination.build(filters.page, filters.limit, int(total)),
        )

    async def get_payment_stats(self, user_id: int, role: Union[PartyRole, str]) -> PaymentStats:
        role = _parse_role(role)
        now = self._clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.payment_repository
            by_status = await repo.aggregate_by_status(role, user_id)
            monthly = None
            if role == PartyRole.RIDER:
                monthly = await repo.summarize(user_id, start_date=month_start)

        stats = PaymentStats()
        for status, totals in by_status.items():
            stats.total_payments += totals.count
            stats.total_amount += totals.total_amount
            if status == PaymentStatus.COMPLETED:
                stats.completed_payments = totals.count
                stats.completed_amount = totals.total_amount
            elif status == PaymentStatus.PENDING:
                stats.pending_payments = totals.count
            elif status == PaymentStatus.PROCESSING:
                stats.processing_payments = totals.count
            elif status == PaymentStatus.FAILED:
                stats.failed_payments = totals.count
            elif status == PaymentStatus.REFUNDED:
                stats.refunded_payments = totals.count
                stats.refunded_amount = totals.refunded_amount
        if stats.total_payments:
            stats.average_amount = (stats.total_amount / stats.total_payments).quantize(CENT)
        if monthly is not None:
            stats.monthly_earnings = monthly.total_earnings
            stats.monthly_deliveries = monthly.count
        return stats

    # ------------------------------------------------------------------ internals

    async def _charge(self, record: PaymentRecord) -> PaymentRecordDTO:
        """Gateway call plus outcome handling shared by process and retry."""
        with bound_contextvars(payment_id=record.id, offer_id=record.offer_id, attempt=record.retry_count):
            return await self._charge_once(record)

    async def _charge_once(self, record: PaymentRecord) -> PaymentRecordDTO:
        request = GatewayChargeRequest(
            payment_id=record.id,
            offer_id=record.offer_id,
            amount=record.total_amount,
            currency=record.currency,
            payment_method=record.payment_method,
            payment_method_details=record.payment_method_details,
            idempotency_key=_charge_idempotency_key(record),
            metadata={"business_id": record.business_id, "rider_id": record.rider_id},
        )
        try:
            result: GatewayChargeResult = await self._call_gateway(self.gateway.process_payment(request))
            if not result.success:
                raise PaymentGatewayException(
                    "Payment was declined by the payment gateway",
                    provider=self.gateway.provider,
                    raw_response=result.raw,
                    code=PaymentCode.DECLINED,
                )
        except PaymentGatewayException as exc:
            async with self._uow_factory() as uow:
                domain = PaymentDomainService(uow.payment_repository, uow.offer_repository)
                failed = await domain.fail_payment(record.id, exc.message, exc.raw_response)
                events = domain.clear_events()
            logger.warning(
                "payment_gateway_failed",
                payment_id=record.id,
                provider=exc.provider,
                error=exc.message,
                retry_count=failed.retry_count,
                next_retry_at=failed.next_retry_at.isoformat() if failed.next_retry_at else None,
            )
            await self._notify(events)
            raise

        async with self._uow_factory() as uow:
            domain = PaymentDomainService(uow.payment_repository, uow.offer_repository)
            completed = await domain.complete_payment(
                record.id,
                result.transaction_id or request.idempotency_key,
                result.raw or result.model_dump(mode="json", exclude={"raw"}),
            )
            events = domain.clear_events()

        logger.info(
            "payment_completed",
            payment_id=completed.id,
            offer_id=completed.offer_id,
            transaction_id=completed.transaction_id,
            retry_count=completed.retry_count,
        )
        await self._notify(events)
        return PaymentRecordDTO.model_validate(completed)

    async def _call_gateway(self, call: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(call, timeout=self._gateway_timeout)
        except PaymentGatewayException:
            raise
        except asyncio.TimeoutError:
            raise PaymentGatewayException(
                f"Payment gateway timed out after {self._gateway_timeout}s",
                provider=self.gateway.provider,
                code=PaymentCode.TIMEOUT,
                error_type="PaymentTimeout",
            )
        except Exception as exc:
            raise PaymentGatewayException(
                str(exc) or type(exc).__name__,
                provider=self.gateway.provider,
            ) from exc

    async def _notify(self, events: Iterable[PaymentEvent]) -> None:
        for event in events:
            for notification in build_notifications(event):
                try:
                    await asyncio.wait_for(self.notifications.send(notification), timeout=self._notification_timeout)
                except Exception as exc:
                    logger.warning(
                        "payment_notification_failed",
                        payment_id=event.payment_id,
                        user_id=notification.user_id,
                        type=notification.type,
                        error=str(exc) or type(exc).__name__,
                    )
