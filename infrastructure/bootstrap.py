"""
Composition root: wires repositories, gateway and notification sink into the
application services.

Callers that live inside a long-running event loop can use the module-level
engine through ``build_payment_service()``. One-shot callers such as Celery
tasks run each job on a fresh loop and must use ``payment_service_scope()`` so
the engine and HTTP client are bound to that loop and disposed with it.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from application.ports.notification import NotificationSink
from application.ports.payment_gateway import PaymentGateway
from application.services.earnings_service import EarningsService
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import create_engine
from infrastructure.external.payments import get_payment_gateway
from infrastructure.notifications import get_notification_sink
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork, sqlalchemy_uow_factory


logger = get_logger(__name__)


def build_payment_service(
    *,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    gateway: Optional[PaymentGateway] = None,
    notifications: Optional[NotificationSink] = None,
) -> PaymentService:
    return PaymentService(
        uow_factory=uow_factory,
        gateway=gateway or get_payment_gateway(),
        notifications=notifications or get_notification_sink(),
    )


def build_earnings_service(
    *,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
) -> EarningsService:
    return EarningsService(uow_factory=uow_factory)


async def _close_gateway(gateway: PaymentGateway) -> None:
    aclose = getattr(gateway, "aclose", None)
    if callable(aclose):
        await aclose()


@asynccontextmanager
async def payment_service_scope(
    *,
    database_url: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    notifications: Optional[NotificationSink] = None,
) -> AsyncIterator[PaymentService]:
    """Yield a PaymentService backed by its own engine, disposed on exit."""
    engine = create_engine(database_url)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    owned_gateway = gateway is None
    service = build_payment_service(
        uow_factory=sqlalchemy_uow_factory(session_factory),
        gateway=gateway,
        notifications=notifications,
    )
    try:
        yield service
    finally:
        if owned_gateway:
            await _close_gateway(service.gateway)
        await engine.dispose()
        logger.debug("payment_service_scope_closed")
