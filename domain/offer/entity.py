"""
Offer 实体 - 交付订单（支付核心只关心其 delivered/completed 状态）
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import InvalidPaymentStateException


class OfferStatus(str, Enum):
    OPEN = "open"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Offers a rider has taken on, counted as "accepted" by performance metrics
ACCEPTED_STATUSES = (
    OfferStatus.ACCEPTED,
    OfferStatus.PICKED_UP,
    OfferStatus.IN_TRANSIT,
    OfferStatus.DELIVERED,
    OfferStatus.COMPLETED,
)

FINISHED_STATUSES = (OfferStatus.DELIVERED, OfferStatus.COMPLETED)


@dataclass
class Offer:
    id: Optional[int]
    business_id: int
    amount: Decimal
    currency: Optional[str] = None
    status: OfferStatus = OfferStatus.OPEN
    rider_id: Optional[int] = None
    title: Optional[str] = None
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None
    business_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = OfferStatus(self.status)

    def ensure_payable(self) -> None:
        """业务规则：只有已送达且有骑手接单的 offer 才能发起支付"""
        if self.status != OfferStatus.DELIVERED:
            raise InvalidPaymentStateException(
                f"Offer {self.id} must be delivered before payment, got {self.status.value}",
                current_status=self.status.value,
                details={"offer_id": self.id},
            )
        if self.rider_id is None:
            raise InvalidPaymentStateException(
                f"Offer {self.id} has no assigned rider",
                details={"offer_id": self.id},
            )

    def mark_completed(self) -> None:
        """delivered -> completed（支付成功后）"""
        if self.status == OfferStatus.COMPLETED:
            return
        if self.status != OfferStatus.DELIVERED:
            raise InvalidPaymentStateException(
                f"Offer {self.id} cannot be completed from {self.status.value}",
                current_status=self.status.value,
                details={"offer_id": self.id},
            )
        self.status = OfferStatus.COMPLETED
        self.updated_at = datetime.now(timezone.utc)
