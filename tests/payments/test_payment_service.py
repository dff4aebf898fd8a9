import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.services.payment_service import PaymentService
from core.settings import payment_settings
from domain.common.exceptions import (
    DomainValidationException,
    InvalidPaymentStateException,
    OfferNotFoundException,
    PaymentAlreadyExistsException,
    PaymentGatewayException,
    PaymentNotFoundException,
)
from domain.offer.entity import OfferStatus
from domain.payment.entity import PaymentStatus
from domain.payment.fees import FeeCalculator
from infrastructure.external.payments.exceptions import PaymentDeclinedError
from infrastructure.repositories.offer_repository import SQLAlchemyOfferRepository
from shared.codes.payment_codes import PaymentCode

from tests.support import BUSINESS_ID, RIDER_ID, RecordingSink, ScriptedGateway


CARD = {"payment_method": "credit_card", "payment_method_details": {"last4": "4242", "brand": "visa"}}


async def _offer_status(uow_factory, offer_id):
    async with uow_factory(readonly=True) as uow:
        return (await uow.offer_repository.get_by_id(offer_id)).status


@pytest.mark.asyncio
async def test_process_payment_settles_delivered_offer(payment_service, make_offer, uow_factory, gateway, sink):
    offer_id = await make_offer()

    payment = await payment_service.process_payment(offer_id, CARD)

    assert payment.status == PaymentStatus.COMPLETED
    assert payment.platform_fee == Decimal("10.00")
    assert payment.rider_earnings == Decimal("90.00")
    assert payment.transaction_id == "txn_1"
    assert payment.retry_count == 0
    assert payment.metadata["source"] == "web"
    assert "processing_time_ms" in payment.metadata
    assert payment.payment_method_details == {"last4": "4242", "brand": "visa"}
    assert await _offer_status(uow_factory, offer_id) == OfferStatus.COMPLETED

    charge = gateway.charges[0]
    assert charge.amount == Decimal("100.00")
    assert len(charge.idempotency_key) == 64

    assert [(n.user_id, n.type) for n in sink.sent] == [
        (BUSINESS_ID, "payment_processed"),
        (RIDER_ID, "payment_processed"),
    ]
    assert sink.sent[1].data["earnings"] == "90.00"


@pytest.mark.asyncio
async def test_gateway_failure_leaves_record_failed_and_propagates(payment_service, make_offer, uow_factory, gateway, sink):
    offer_id = await make_offer()
    gateway.outcomes = [PaymentDeclinedError("Insufficient funds", provider="scripted")]

    with pytest.raises(PaymentGatewayException) as exc_info:
        await payment_service.process_payment(offer_id, CARD)
    assert exc_info.value.message == "Insufficient funds"

    async with uow_factory(readonly=True) as uow:
        record = await uow.payment_repository.get_by_offer_id(offer_id)
    assert record.status == PaymentStatus.FAILED
    assert record.failure_reason == "Insufficient funds"
    assert record.retry_count == 0
    assert record.next_retry_at is not None
    assert record.transaction_id is None
    assert await _offer_status(uow_factory, offer_id) == OfferStatus.DELIVERED
    assert {n.type for n in sink.sent} == {"payment_failed"}


@pytest.mark.asyncio
async def test_retry_after_failure_completes(payment_service, make_offer, uow_factory, gateway):
    offer_id = await make_offer()
    gateway.outcomes = [PaymentDeclinedError("Insufficient funds", provider="scripted")]
    with pytest.raises(PaymentGatewayException):
        await payment_service.process_payment(offer_id, CARD)
    async with uow_factory(readonly=True) as uow:
        payment_id = (await uow.payment_repository.get_by_offer_id(offer_id)).id

    payment = await payment_service.retry_payment(payment_id)

    assert payment.status == PaymentStatus.COMPLETED
    assert payment.retry_count == 1
    assert payment.failure_reason is None
    # each attempt carries its own idempotency key
    assert gateway.charges[0].idempotency_key != gateway.charges[1].idempotency_key
    assert await _offer_status(uow_factory, offer_id) == OfferStatus.COMPLETED


@pytest.mark.asyncio
async def test_partial_refund(payment_service, make_offer, gateway, sink):
    offer_id = await make_offer()
    payment = await payment_service.process_payment(offer_id, CARD)
    sink.sent.clear()

    refunded = await payment_service.refund_payment(payment.id, Decimal("50"), "damaged package")

    assert refunded.status == PaymentStatus.REFUNDED
    assert refunded.refund_amount == Decimal("50.00")
    assert refunded.refund_reason == "damaged package"
    assert refunded.refund_id == "re_1"
    assert gateway.refunds[0].transaction_id == "txn_1"
    assert [n.type for n in sink.sent] == ["payment_refunded", "payment_refunded"]


@pytest.mark.asyncio
async def test_refund_defaults_to_full_amount(payment_service, make_payment, gateway):
    payment_id = await make_payment(status="completed")

    refunded = await payment_service.refund_payment(payment_id)

    assert refunded.refund_amount == Decimal("100.00")
    assert gateway.refunds[0].amount == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["pending", "processing", "failed", "refunded"])
async def test_refund_requires_completed_payment(payment_service, make_payment, gateway, status):
    payment_id = await make_payment(status=status)

    with pytest.raises(InvalidPaymentStateException):
        await payment_service.refund_payment(payment_id, Decimal("10"))
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_refund_above_total_is_rejected_before_gateway(payment_service, make_payment, gateway):
    payment_id = await make_payment(status="completed")

    with pytest.raises(DomainValidationException):
        await payment_service.refund_payment(payment_id, Decimal("100.01"))
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_second_payment_for_offer_conflicts(payment_service, make_offer, gateway):
    offer_id = await make_offer()
    await payment_service.process_payment(offer_id, CARD)

    with pytest.raises(PaymentAlreadyExistsException):
        await payment_service.process_payment(offer_id, CARD)
    assert len(gateway.charges) == 1


@pytest.mark.asyncio
async def test_unique_index_rejects_duplicate_records(make_offer, make_payment, uow_factory):
    offer_id = await make_offer()
    await make_payment(status="pending", offer_id=offer_id)
    async with uow_factory(readonly=True) as uow:
        existing = await uow.payment_repository.get_by_offer_id(offer_id)
    existing.id = None

    # Bypasses the pre-check, as a concurrent request that read before the insert would
    with pytest.raises(PaymentAlreadyExistsException):
        async with uow_factory() as uow:
            await uow.payment_repository.create(existing)

    async with uow_factory(readonly=True) as uow:
        assert await uow.payment_repository.count_by_party("rider", RIDER_ID) == 1


@pytest.mark.asyncio
async def test_preconditions_fail_without_side_effects(payment_service, make_offer, gateway, sink):
    with pytest.raises(OfferNotFoundException):
        await payment_service.process_payment(9999, CARD)

    in_transit = await make_offer(status="in_transit")
    with pytest.raises(InvalidPaymentStateException):
        await payment_service.process_payment(in_transit, CARD)

    with pytest.raises(PaymentNotFoundException):
        await payment_service.retry_payment(9999)

    assert gateway.charges == []
    assert sink.sent == []


@pytest.mark.asyncio
async def test_malformed_request_is_a_validation_error(payment_service, make_offer):
    offer_id = await make_offer()

    with pytest.raises(DomainValidationException) as exc_info:
        await payment_service.process_payment(offer_id, {"payment_method": "cash"})
    assert exc_info.value.field == "payment_method"


@pytest.mark.asyncio
async def test_retry_bound(payment_service, make_payment, gateway):
    payment_id = await make_payment(status="failed", retry_count=5, max_retries=5)

    with pytest.raises(InvalidPaymentStateException):
        await payment_service.retry_payment(payment_id)
    assert gateway.charges == []


@pytest.mark.asyncio
async def test_retry_of_completed_payment_is_rejected(payment_service, make_payment):
    payment_id = await make_payment(status="completed")

    with pytest.raises(InvalidPaymentStateException):
        await payment_service.retry_payment(payment_id)


@pytest.mark.asyncio
async def test_last_retry_failure_sends_final_notification(payment_service, make_payment, gateway, sink):
    payment_id = await make_payment(status="failed", retry_count=4, max_retries=5)
    gateway.outcomes = [PaymentDeclinedError("Card expired", provider="scripted")]

    with pytest.raises(PaymentGatewayException):
        await payment_service.retry_payment(payment_id)

    record = await payment_service.get_payment(payment_id)
    assert record.retry_count == 5
    assert record.next_retry_at is None
    assert [n.type for n in sink.sent] == ["payment_failed_final", "payment_failed_final"]


@pytest.mark.asyncio
async def test_gateway_timeout_marks_payment_failed(uow_factory, make_offer, sink):
    class SlowGateway(ScriptedGateway):
        async def process_payment(self, req):
            await asyncio.sleep(1)
            return await super().process_payment(req)

    service = PaymentService(uow_factory, SlowGateway(), sink, gateway_timeout=0.05)
    offer_id = await make_offer()

    with pytest.raises(PaymentGatewayException) as exc_info:
        await service.process_payment(offer_id, CARD)
    assert exc_info.value.code == PaymentCode.TIMEOUT

    async with uow_factory(readonly=True) as uow:
        record = await uow.payment_repository.get_by_offer_id(offer_id)
    assert record.status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_notification_failures_are_swallowed(uow_factory, make_offer, gateway):
    service = PaymentService(
        uow_factory,
        gateway,
        RecordingSink(fail=True),
        fee_calculator=FeeCalculator(Decimal("0.10")),
    )
    offer_id = await make_offer()

    payment = await service.process_payment(offer_id, CARD)

    assert payment.status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_status_callback_completes_payment(payment_service, make_payment, uow_factory, sink):
    payment_id = await make_payment(status="processing")

    payment = await payment_service.update_payment_status(
        payment_id,
        "completed",
        {"transaction_id": "cb_1", "gateway_response": {"event": "charge.succeeded"}},
    )

    assert payment.status == PaymentStatus.COMPLETED
    assert payment.transaction_id == "cb_1"
    assert payment.metadata["gateway_response"] == {"event": "charge.succeeded"}
    assert await _offer_status(uow_factory, payment.offer_id) == OfferStatus.COMPLETED
    assert [n.type for n in sink.sent] == ["payment_processed", "payment_processed"]

    sink.sent.clear()
    await payment_service.update_payment_status(payment_id, "completed", {"gateway_response": {"event": "dup"}})
    assert sink.sent == []


@pytest.mark.asyncio
async def test_status_callback_failure_notifies(payment_service, make_payment, sink):
    payment_id = await make_payment(status="processing")

    payment = await payment_service.update_payment_status(payment_id, PaymentStatus.FAILED, {"reason": "Card declined"})

    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Card declined"
    assert {n.type for n in sink.sent} == {"payment_failed"}


@pytest.mark.asyncio
async def test_status_callback_guards(payment_service, make_payment, sink):
    payment_id = await make_payment(status="refunded", refund_amount=Decimal("100.00"))

    with pytest.raises(DomainValidationException):
        await payment_service.update_payment_status(payment_id, "settled")
    with pytest.raises(InvalidPaymentStateException):
        await payment_service.update_payment_status(payment_id, "completed")
    assert sink.sent == []


def test_calculate_fees_preview(payment_service):
    fees = payment_service.calculate_fees("100.00")
    assert fees.platform_fee == Decimal("10.00")
    assert fees.rider_earnings == Decimal("90.00")


@pytest.mark.asyncio
async def test_late_failure_callback_cannot_reopen_paid_payment(uow_factory, make_offer, gateway, sink):
    service = PaymentService(
        uow_factory,
        gateway,
        sink,
        fee_calculator=FeeCalculator(Decimal("0.10")),
        clock=lambda: datetime.now(timezone.utc) + timedelta(hours=1),
    )
    offer_id = await make_offer()
    payment = await service.process_payment(offer_id, CARD)
    sink.sent.clear()

    with pytest.raises(InvalidPaymentStateException):
        await service.update_payment_status(payment.id, "failed", {"reason": "late webhook"})
    report = await service.process_scheduled_retries()

    stored = await service.get_payment(payment.id)
    assert stored.status == PaymentStatus.COMPLETED
    assert stored.transaction_id == "txn_1"
    assert stored.retry_count == 0
    assert report.processed == 0
    assert len(gateway.charges) == 1
    assert sink.sent == []


@pytest.mark.asyncio
async def test_payment_currency_follows_offer_when_not_given(payment_service, make_offer, gateway):
    offer_id = await make_offer(currency="EUR")

    payment = await payment_service.process_payment(offer_id, {"payment_method": "paypal"})

    assert payment.currency == "EUR"
    assert gateway.charges[0].currency == "EUR"


@pytest.mark.asyncio
async def test_payment_currency_falls_back_to_configured_default(payment_service, make_offer, monkeypatch):
    monkeypatch.setattr(payment_settings, "default_currency", "GBP")
    offer_id = await make_offer()
    # offer 行总带币种，这里模拟上游未提供币种的 offer
    to_entity = SQLAlchemyOfferRepository._to_entity

    def _without_currency(self, model):
        offer = to_entity(self, model)
        offer.currency = None
        return offer

    monkeypatch.setattr(SQLAlchemyOfferRepository, "_to_entity", _without_currency)

    payment = await payment_service.process_payment(offer_id, {"payment_method": "wallet"})
    assert payment.currency == "GBP"


@pytest.mark.asyncio
async def test_payment_currency_from_request_wins(payment_service, make_offer):
    offer_id = await make_offer(currency="EUR")

    payment = await payment_service.process_payment(offer_id, {"payment_method": "wallet", "currency": "cad"})

    assert payment.currency == "CAD"
