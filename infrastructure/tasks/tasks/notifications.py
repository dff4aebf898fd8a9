"""Notification delivery Celery tasks"""
from __future__ import annotations

from typing import Any, Dict

from celery import shared_task

from ..utils.base_task import BaseTask
from application.ports.notification import Notification
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    name="notifications.send",
    bind=True,
    base=BaseTask,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_notification(self, notification: Dict[str, Any]) -> None:
    """Deliver one payment notification to its recipient.

    Delivery channels (push, SMS, e-mail) plug in here; until then the message
    is written to the structured log.
    """
    message = Notification.model_validate(notification)
    logger.info(
        "notification_delivered",
        user_id=message.user_id,
        type=message.type,
        title=message.title,
        payment_id=message.data.get("payment_id"),
    )
