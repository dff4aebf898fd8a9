"""Payment settlement Celery tasks"""
from __future__ import annotations

from typing import Any, Dict

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from core.settings import payment_settings

logger = get_logger(__name__)


async def _run_scheduled_retries() -> Dict[str, Any]:
    # Imported lazily so the worker can start before the database is reachable
    from infrastructure.bootstrap import payment_service_scope

    async with payment_service_scope() as service:
        report = await service.process_scheduled_retries()
    return report.model_dump(mode="json")


# A sweep never outlives the next beat tick
@shared_task(
    name="payments.process_scheduled_retries",
    bind=True,
    base=BaseTask,
    soft_time_limit=payment_settings.retries.sweep_interval_seconds,
)
def process_scheduled_retries(self) -> Dict[str, Any]:
    """Retry every failed payment whose retry delay has elapsed.

    Per-record failures are collected in the returned report; only errors that
    prevent the sweep from running at all fail the task.
    """
    report = self.run_async(_run_scheduled_retries())
    logger.info(
        "scheduled_retries_finished",
        processed=report["processed"],
        successful=report["successful"],
        failed=report["failed"],
    )
    return report
