"""Notification sink that hands messages to the Celery ``notifications.send`` task."""
from __future__ import annotations

import asyncio
from typing import Optional

from application.ports.notification import Notification
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


class CeleryNotificationSink:
    def __init__(self, dispatcher: Optional[TaskDispatcher] = None) -> None:
        self._dispatcher = dispatcher or TaskDispatcher()

    async def send(self, notification: Notification) -> None:
        # Publishing talks to the broker synchronously; keep it off the event loop
        await asyncio.to_thread(self._dispatcher.send_notification, notification.model_dump(mode="json"))
