from datetime import timedelta
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException, PaymentNotFoundException
from domain.payment.entity import PaymentStatus

from tests.support import BUSINESS_ID, RIDER_ID, utc


@pytest.fixture
def seeded(make_payment):
    async def _seed():
        base = utc(2026, 3, 10, 12)
        ids = {}
        ids["c1"] = await make_payment(status="completed", created_at=base)
        ids["c2"] = await make_payment(
            status="completed", created_at=base + timedelta(days=1),
            earnings=Decimal("45.00"), fee=Decimal("5.00"),
        )
        ids["f1"] = await make_payment(status="failed", created_at=base + timedelta(days=2))
        ids["r1"] = await make_payment(
            status="refunded", created_at=base + timedelta(days=3), refund_amount=Decimal("40.00"),
        )
        # another business and rider
        await make_payment(status="completed", business_id=11, rider_id=21, created_at=base)
        return ids

    return _seed


@pytest.mark.asyncio
async def test_history_is_paginated_newest_first(payment_service, seeded):
    ids = await seeded()

    page = await payment_service.get_payment_history(BUSINESS_ID, "business", {"page": 1, "limit": 3})

    assert [p.id for p in page.payments] == [ids["r1"], ids["f1"], ids["c2"]]
    assert page.pagination.total == 4
    assert page.pagination.pages == 2

    second = await payment_service.get_payment_history(BUSINESS_ID, "business", {"page": 2, "limit": 3})
    assert [p.id for p in second.payments] == [ids["c1"]]


@pytest.mark.asyncio
async def test_history_filters_by_status_and_dates(payment_service, seeded):
    ids = await seeded()

    completed = await payment_service.get_payment_history(RIDER_ID, "rider", {"status": "completed"})
    assert {p.id for p in completed.payments} == {ids["c1"], ids["c2"]}

    window = await payment_service.get_payment_history(
        RIDER_ID, "rider",
        {"start_date": utc(2026, 3, 11), "end_date": utc(2026, 3, 12, 23)},
    )
    assert {p.id for p in window.payments} == {ids["c2"], ids["f1"]}


@pytest.mark.asyncio
async def test_history_rejects_bad_input(payment_service):
    with pytest.raises(DomainValidationException):
        await payment_service.get_payment_history(RIDER_ID, "courier")
    with pytest.raises(DomainValidationException):
        await payment_service.get_payment_history(
            RIDER_ID, "rider", {"start_date": utc(2026, 3, 2), "end_date": utc(2026, 3, 1)}
        )


@pytest.mark.asyncio
async def test_business_stats(payment_service, seeded):
    await seeded()

    stats = await payment_service.get_payment_stats(BUSINESS_ID, "business")

    assert stats.total_payments == 4
    assert stats.total_amount == Decimal("350.00")
    assert stats.completed_payments == 2
    assert stats.completed_amount == Decimal("150.00")
    assert stats.failed_payments == 1
    assert stats.refunded_payments == 1
    assert stats.refunded_amount == Decimal("40.00")
    assert stats.average_amount == Decimal("87.50")
    assert stats.monthly_earnings is None


@pytest.mark.asyncio
async def test_rider_stats_include_current_month(payment_service, make_payment):
    await make_payment(status="completed", earnings=Decimal("18.00"), fee=Decimal("2.00"))
    await make_payment(status="failed")

    stats = await payment_service.get_payment_stats(RIDER_ID, "rider")

    assert stats.total_payments == 2
    assert stats.monthly_earnings == Decimal("18.00")
    assert stats.monthly_deliveries == 1


@pytest.mark.asyncio
async def test_get_payment(payment_service, make_payment):
    payment_id = await make_payment(status="completed")

    payment = await payment_service.get_payment(payment_id)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.payment_method_details == {"last4": "4242"}
    with pytest.raises(PaymentNotFoundException):
        await payment_service.get_payment(payment_id + 100)
