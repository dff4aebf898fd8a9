import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine

from application.ports.notification import Notification
from core.config import settings
from core.settings import payment_settings
from infrastructure.database import create_tables
from infrastructure.models import OfferModel, PaymentRecordModel
from infrastructure.notifications import (
    CeleryNotificationSink,
    LoggingNotificationSink,
    get_notification_sink,
)
from infrastructure.tasks.config.beat import CELERY_BEAT_SCHEDULE
from infrastructure.tasks.tasks.notifications import send_notification
from infrastructure.tasks.tasks.payments import process_scheduled_retries
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


async def _seed_failed_payment(url: str) -> int:
    engine = create_async_engine(url)
    now = datetime.now(timezone.utc)
    await create_tables(engine)
    async with engine.begin() as conn:
        offer_id = (
            await conn.execute(
                OfferModel.__table__.insert().values(
                    business_id=10, rider_id=20, amount=Decimal("40.00"), currency="USD",
                    status="delivered", created_at=now, updated_at=now,
                )
            )
        ).inserted_primary_key[0]
        payment_id = (
            await conn.execute(
                PaymentRecordModel.__table__.insert().values(
                    offer_id=offer_id, business_id=10, rider_id=20,
                    total_amount=Decimal("40.00"), platform_fee=Decimal("2.00"), rider_earnings=Decimal("38.00"),
                    currency="USD", payment_method="debit_card", status="failed",
                    retry_count=0, max_retries=5, retry_delay=60, failure_reason="Card declined",
                    next_retry_at=now - timedelta(minutes=5), created_at=now, updated_at=now,
                )
            )
        ).inserted_primary_key[0]
    await engine.dispose()
    return payment_id


async def _status(url: str, payment_id: int) -> str:
    engine = create_async_engine(url)
    async with engine.connect() as conn:
        result = await conn.execute(
            select(PaymentRecordModel.__table__.c.status).where(PaymentRecordModel.__table__.c.id == payment_id)
        )
        status = result.scalar_one()
    await engine.dispose()
    return status


def test_scheduled_retry_task_runs_the_sweep(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}"
    monkeypatch.setattr(settings.database, "url", url)
    payment_id = asyncio.run(_seed_failed_payment(url))

    report = process_scheduled_retries.apply().get()

    assert report == {"processed": 1, "successful": 1, "failed": 0, "errors": []}
    assert asyncio.run(_status(url, payment_id)) == "completed"


def test_beat_schedules_the_sweep():
    entry = CELERY_BEAT_SCHEDULE["payments-process-scheduled-retries"]
    assert entry["task"] == process_scheduled_retries.name == "payments.process_scheduled_retries"


def test_notification_task_accepts_serialized_notification():
    payload = Notification(
        user_id=20, type="payment_processed", title="Payment Received",
        message="You have received USD 90.00 for your delivery.", data={"payment_id": 1},
    ).model_dump(mode="json")

    result = send_notification.apply(kwargs={"notification": payload})

    assert result.successful()


def test_dispatcher_runs_notification_inline_in_eager_mode(monkeypatch):
    from infrastructure.tasks.config.celery import celery_app

    def _no_broker(*args, **kwargs):
        raise AssertionError("eager mode must not publish to the broker")

    monkeypatch.setattr(celery_app, "send_task", _no_broker)
    payload = Notification(
        user_id=20, type="payment_processed", title="Payment Received", message="ok", data={"payment_id": 3},
    ).model_dump(mode="json")

    assert celery_app.conf.task_always_eager
    result = TaskDispatcher().send_notification(payload)

    assert result.successful()


def test_dispatcher_triggers_the_sweep_task(monkeypatch):
    calls = []
    monkeypatch.setattr(process_scheduled_retries, "apply_async", lambda *a, **kw: calls.append((a, kw)))

    TaskDispatcher().trigger_scheduled_retries()

    assert calls == [((), {})]


def test_only_the_sweep_carries_a_soft_time_limit():
    assert process_scheduled_retries.soft_time_limit == payment_settings.retries.sweep_interval_seconds
    assert send_notification.soft_time_limit is None


@pytest.mark.asyncio
async def test_celery_sink_hands_off_to_dispatcher():
    class FakeDispatcher:
        def __init__(self):
            self.sent = []

        def send_notification(self, notification):
            self.sent.append(notification)

    dispatcher = FakeDispatcher()
    sink = CeleryNotificationSink(dispatcher=dispatcher)
    await sink.send(Notification(user_id=10, type="payment_refunded", title="Payment Refunded", message="ok"))

    assert dispatcher.sent == [
        {"user_id": 10, "type": "payment_refunded", "title": "Payment Refunded", "message": "ok", "data": {}}
    ]


def test_notification_sink_factory():
    assert isinstance(get_notification_sink("log"), LoggingNotificationSink)
    assert isinstance(get_notification_sink("celery"), CeleryNotificationSink)
    with pytest.raises(ValueError):
        get_notification_sink("pigeon")
