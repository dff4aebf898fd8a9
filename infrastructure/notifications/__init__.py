"""Notification sink adapters and factory."""
from __future__ import annotations

from typing import Optional

from application.ports.notification import NotificationSink
from core.config import settings

from .celery_sink import CeleryNotificationSink
from .logging_sink import LoggingNotificationSink


def get_notification_sink(backend: Optional[str] = None) -> NotificationSink:
    name = (backend or settings.notifications.backend).lower()
    if name == "log":
        return LoggingNotificationSink()
    if name == "celery":
        return CeleryNotificationSink()
    raise ValueError(f"Unsupported notification backend: {name}")


__all__ = ["CeleryNotificationSink", "LoggingNotificationSink", "get_notification_sink"]
