"""Pytest bootstrap configuration.

Environment variables are set before any application module is imported so
settings, the module-level engine and Celery pick up test values.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFICATIONS__BACKEND", "log")
os.environ.setdefault("PAYMENT__DEFAULT_PROVIDER", "simulated")
os.environ.setdefault("PAYMENT__SIMULATED__FAILURE_RATE", "0")
os.environ.setdefault("PAYMENT__SIMULATED__SEED", "7")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from application.services.payment_service import PaymentService  # noqa: E402
from domain.payment.fees import FeeCalculator  # noqa: E402
from infrastructure.database import create_tables  # noqa: E402
from infrastructure.models import OfferModel, PaymentRecordModel  # noqa: E402
from infrastructure.unit_of_work import sqlalchemy_uow_factory  # noqa: E402
from tests.support import BUSINESS_ID, RIDER_ID, RecordingSink, ScriptedGateway  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    return sqlalchemy_uow_factory(session_factory)


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def payment_service(uow_factory, gateway, sink):
    return PaymentService(
        uow_factory,
        gateway,
        sink,
        fee_calculator=FeeCalculator(Decimal("0.10"), Decimal("0.50")),
        max_retries=5,
        retry_delay=1800,
        gateway_timeout=1.0,
        notification_timeout=0.5,
    )


@pytest.fixture
def make_offer(session_factory):
    async def _make(**overrides) -> int:
        values = dict(
            business_id=BUSINESS_ID,
            rider_id=RIDER_ID,
            amount=Decimal("100.00"),
            currency="USD",
            status="delivered",
            title="Groceries run",
            pickup_address="1 Market St",
            delivery_address="9 Elm St",
            business_name="Corner Shop",
        )
        values.update(overrides)
        async with session_factory() as session:
            model = OfferModel(**values)
            session.add(model)
            await session.commit()
            return model.id

    return _make


@pytest.fixture
def make_payment(session_factory, make_offer):
    """Insert a payment row directly, bypassing the service."""

    async def _make(
        *,
        status: str = "completed",
        earnings: Decimal = Decimal("90.00"),
        fee: Decimal = Decimal("10.00"),
        created_at: datetime = None,
        offer_id: int = None,
        **overrides,
    ) -> int:
        created_at = created_at or datetime.now(timezone.utc)
        if offer_id is None:
            offer_status = "completed" if status in {"completed", "refunded"} else "delivered"
            offer_id = await make_offer(
                amount=earnings + fee,
                status=offer_status,
                rider_id=overrides.get("rider_id", RIDER_ID),
                business_id=overrides.get("business_id", BUSINESS_ID),
            )
        values = dict(
            offer_id=offer_id,
            business_id=BUSINESS_ID,
            rider_id=RIDER_ID,
            total_amount=earnings + fee,
            platform_fee=fee,
            rider_earnings=earnings,
            currency="USD",
            payment_method="credit_card",
            payment_method_details={"last4": "4242"},
            status=status,
            retry_count=0,
            max_retries=5,
            retry_delay=1800,
            extra_metadata={},
            created_at=created_at,
            updated_at=created_at,
        )
        if status in {"completed", "refunded"}:
            values.update(transaction_id=f"txn_seed_{offer_id}", processed_at=created_at)
        if status == "failed":
            values.update(
                failure_reason="Card declined",
                next_retry_at=created_at + timedelta(seconds=1800),
            )
        values.update(overrides)
        async with session_factory() as session:
            model = PaymentRecordModel(**values)
            session.add(model)
            await session.commit()
            return model.id

    return _make
