"""
Composition of payment notifications from domain events.
"""
from __future__ import annotations

from typing import List

from application.ports.notification import Notification
from domain.payment.entity import PartyRole
from domain.payment.events import (
    PaymentCompleted,
    PaymentEvent,
    PaymentFailed,
    PaymentRefunded,
)


_TITLES = {
    "payment_processed": {
        PartyRole.BUSINESS: "Payment Processed",
        PartyRole.RIDER: "Payment Received",
    },
    "payment_failed": {
        PartyRole.BUSINESS: "Payment Failed",
        PartyRole.RIDER: "Payment Issue",
    },
    "payment_failed_final": {
        PartyRole.BUSINESS: "Payment Failed",
        PartyRole.RIDER: "Payment Issue",
    },
    "payment_refunded": {
        PartyRole.BUSINESS: "Payment Refunded",
        PartyRole.RIDER: "Payment Refunded",
    },
}


def _notification_type(event: PaymentEvent) -> str:
    if isinstance(event, PaymentCompleted):
        return "payment_processed"
    if isinstance(event, PaymentFailed):
        return "payment_failed_final" if event.final else "payment_failed"
    if isinstance(event, PaymentRefunded):
        return "payment_refunded"
    raise TypeError(f"unsupported payment event: {type(event).__name__}")


def _message(kind: str, role: PartyRole, event: PaymentEvent) -> str:
    cur = event.currency
    if kind == "payment_processed":
        if role == PartyRole.BUSINESS:
            return f"Your payment of {cur} {event.total_amount} has been processed successfully."
        return f"You have received {cur} {event.rider_earnings} for your delivery."
    if kind == "payment_failed":
        if role == PartyRole.BUSINESS:
            return (
                f"Your payment of {cur} {event.total_amount} could not be processed. "
                "Please check your payment method."
            )
        return "There was an issue processing your payment. Our team has been notified."
    if kind == "payment_failed_final":
        if role == PartyRole.BUSINESS:
            return (
                f"Your payment of {cur} {event.total_amount} could not be processed "
                "and will not be retried automatically. Please contact support."
            )
        return "Your payment could not be completed after several attempts. Our team has been notified."
    if role == PartyRole.BUSINESS:
        return f"A refund of {cur} {event.refund_amount or event.total_amount} has been processed."
    return "A payment refund has been processed for your delivery."


def _data(role: PartyRole, event: PaymentEvent) -> dict:
    data = {
        "payment_id": event.payment_id,
        "offer_id": event.offer_id,
        "currency": event.currency,
    }
    if role == PartyRole.BUSINESS:
        data["amount"] = str(event.total_amount)
    else:
        data["earnings"] = str(event.rider_earnings)
    if isinstance(event, PaymentFailed):
        data.update(reason=event.reason, retry_count=event.retry_count, max_retries=event.max_retries)
    elif isinstance(event, PaymentRefunded):
        data.update(refund_amount=str(event.refund_amount), refund_id=event.refund_id)
    return data


def build_notifications(event: PaymentEvent) -> List[Notification]:
    """One notification per party (business first, then rider)."""
    kind = _notification_type(event)
    recipients = ((PartyRole.BUSINESS, event.business_id), (PartyRole.RIDER, event.rider_id))
    return [
        Notification(
            user_id=user_id,
            type=kind,
            title=_TITLES[kind][role],
            message=_message(kind, role, event),
            data=_data(role, event),
        )
        for role, user_id in recipients
    ]
