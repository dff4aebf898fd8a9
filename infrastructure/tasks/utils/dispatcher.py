"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from celery.result import AsyncResult


class TaskDispatcher:
    """Internal facade used by infrastructure adapters to schedule tasks.

    Goes through the registered task objects so ``task_always_eager`` (dev/test)
    runs them inline instead of publishing to the broker.
    """

    def send_notification(self, notification: Dict[str, Any]) -> AsyncResult:
        """Fire-and-forget delivery of one serialized Notification."""
        from ..tasks.notifications import send_notification

        return send_notification.apply_async(kwargs={"notification": notification})

    def trigger_scheduled_retries(self) -> AsyncResult:
        """Run the retry sweep now instead of waiting for beat."""
        from ..tasks.payments import process_scheduled_retries

        return process_scheduled_retries.apply_async()
