"""
Earnings DTOs (Pydantic v2) returned by the read-only earnings service.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import Field, field_validator, model_validator

from application.dtos.base import DTOBase, Pagination
from core.config import settings
from domain.payment.entity import PaymentStatus


ZERO = Decimal("0.00")


class EarningsSummary(DTOBase):
    total_earnings: Decimal = ZERO
    total_deliveries: int = 0
    average_earnings_per_delivery: Decimal = ZERO
    pending_earnings: Decimal = ZERO
    currency: str = "USD"


class WindowEarnings(DTOBase):
    total_earnings: Decimal = ZERO
    delivery_count: int = 0
    average_earnings: Decimal = ZERO


class TimeBasedEarnings(DTOBase):
    today: WindowEarnings
    this_week: WindowEarnings
    this_month: WindowEarnings
    this_year: WindowEarnings


class EarningsTrends(DTOBase):
    earnings_change: Decimal = ZERO
    delivery_change: Decimal = ZERO
    current_month_earnings: Decimal = ZERO
    previous_month_earnings: Decimal = ZERO
    current_month_deliveries: int = 0
    previous_month_deliveries: int = 0


class RecentActivity(DTOBase):
    payment_id: int
    offer_id: int
    rider_earnings: Decimal
    total_amount: Decimal
    currency: str
    status: PaymentStatus
    created_at: Optional[datetime] = None
    offer_title: Optional[str] = None
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None


class EarningsEfficiency(DTOBase):
    earnings_per_hour: Decimal = ZERO
    earnings_per_delivery: Decimal = ZERO
    estimated_total_hours: Decimal = ZERO
    total_deliveries: int = 0


class PatternBucket(DTOBase):
    delivery_count: int = 0
    total_earnings: Decimal = ZERO
    average_earnings: Decimal = ZERO


class DeliveryPatterns(DTOBase):
    day_patterns: Dict[str, PatternBucket] = Field(default_factory=dict)
    hour_patterns: Dict[int, PatternBucket] = Field(default_factory=dict)
    total_patterns: int = 0


class PerformanceMetrics(DTOBase):
    completion_rate: Decimal = ZERO
    total_deliveries: int = 0
    total_offers_accepted: int = 0
    earnings_efficiency: EarningsEfficiency = Field(default_factory=EarningsEfficiency)
    delivery_patterns: DeliveryPatterns = Field(default_factory=DeliveryPatterns)


class RiderEarningsSummary(DTOBase):
    summary: EarningsSummary
    time_based_earnings: TimeBasedEarnings
    performance_metrics: PerformanceMetrics
    recent_activity: List[RecentActivity] = Field(default_factory=list)
    trends: EarningsTrends


class EarningsHistoryFilters(DTOBase):
    page: int = Field(1, ge=1)
    limit: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE, ge=1)
    status: PaymentStatus = PaymentStatus.COMPLETED
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    sort_by: Literal["created_at", "rider_earnings", "total_amount"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, v: int) -> int:
        return min(v, settings.MAX_PAGE_SIZE)

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class OfferSummary(DTOBase):
    id: int
    title: Optional[str] = None
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None
    business_id: Optional[int] = None
    business_name: Optional[str] = None


class EarningsHistoryItem(DTOBase):
    payment_id: int
    offer_id: int
    total_amount: Decimal
    platform_fee: Decimal
    rider_earnings: Decimal
    currency: str
    status: PaymentStatus
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    offer: Optional[OfferSummary] = None


class PageSummary(DTOBase):
    total_earnings: Decimal = ZERO
    total_deliveries: int = 0
    average_earnings: Decimal = ZERO


class EarningsHistoryPage(DTOBase):
    earnings: List[EarningsHistoryItem]
    pagination: Pagination
    summary: PageSummary


class BreakdownBucket(DTOBase):
    period: str
    total_earnings: Decimal = ZERO
    total_amount: Decimal = ZERO
    platform_fees: Decimal = ZERO
    delivery_count: int = 0
    average_earnings: Decimal = ZERO


class EarningsBreakdown(DTOBase):
    period: Literal["daily", "weekly", "monthly"]
    breakdown: List[BreakdownBucket] = Field(default_factory=list)
