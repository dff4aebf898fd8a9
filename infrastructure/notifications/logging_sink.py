"""Notification sink that only writes a structured log line."""
from __future__ import annotations

from application.ports.notification import Notification
from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingNotificationSink:
    async def send(self, notification: Notification) -> None:
        logger.info(
            "notification_sent",
            user_id=notification.user_id,
            type=notification.type,
            title=notification.title,
            data=notification.data,
        )
