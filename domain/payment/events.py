"""
Payment domain events.

Dataclass events record payment lifecycle facts for downstream handling
(notifications). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    payment_id: int
    offer_id: int
    business_id: int
    rider_id: int
    total_amount: Decimal
    rider_earnings: Decimal
    currency: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentCompleted(PaymentEvent):
    transaction_id: Optional[str] = None


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 0
    final: bool = False


@dataclass
class PaymentRefunded(PaymentEvent):
    refund_amount: Decimal = Decimal("0.00")
    refund_id: Optional[str] = None
    reason: Optional[str] = None
