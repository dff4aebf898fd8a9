"""
Notification port and message DTO (contracts-first).

The settlement core only composes notifications; delivery channels live in
infrastructure behind the NotificationSink protocol.
"""
from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable
from pydantic import BaseModel, Field


NotificationType = Literal[
    "payment_processed",
    "payment_failed",
    "payment_failed_final",
    "payment_refunded",
]


class Notification(BaseModel):
    """A message for one user.

    Fields:
      - user_id: recipient (business or rider)
      - type: semantic notification type
      - title/message: human readable text
      - data: JSON-serializable context (payment_id, offer_id, amounts)
    """

    user_id: int
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class NotificationSink(Protocol):
    async def send(self, notification: Notification) -> None: ...


__all__ = ["Notification", "NotificationSink", "NotificationType"]
