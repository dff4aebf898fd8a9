"""
骑手收益应用服务 - 只读聚合查询
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional, Union

from application.dtos.base import Pagination, parse_dto
from application.dtos.earnings import (
    BreakdownBucket,
    DeliveryPatterns,
    EarningsBreakdown,
    EarningsEfficiency,
    EarningsHistoryFilters,
    EarningsHistoryItem,
    EarningsHistoryPage,
    EarningsSummary,
    EarningsTrends,
    OfferSummary,
    PageSummary,
    PatternBucket,
    PerformanceMetrics,
    RecentActivity,
    RiderEarningsSummary,
    TimeBasedEarnings,
    WindowEarnings,
)
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.offer.entity import ACCEPTED_STATUSES, FINISHED_STATUSES
from domain.payment.entity import CENT, PartyRole, PaymentStatus
from domain.payment.repository import EarningsPeriod, EarningsTotals


logger = get_logger(__name__)

ZERO = Decimal("0.00")

# PatternTotals.day_of_week uses 0 = Sunday
WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def _avg(total: Decimal, count: int) -> Decimal:
    if not count:
        return ZERO
    return (Decimal(total) / count).quantize(CENT, rounding=ROUND_HALF_UP)


def _change(current, previous) -> Decimal:
    """Percentage change, 0 when there is no previous figure."""
    if not previous:
        return ZERO
    pct = (Decimal(current) - Decimal(previous)) / Decimal(previous) * 100
    return pct.quantize(CENT, rounding=ROUND_HALF_UP)


def _window(totals: EarningsTotals) -> WindowEarnings:
    return WindowEarnings(
        total_earnings=totals.total_earnings,
        delivery_count=totals.count,
        average_earnings=_avg(totals.total_earnings, totals.count),
    )


class EarningsService:
    """骑手收益查询服务，不修改任何状态"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        clock: Optional[Callable[[], datetime]] = None,
        hours_per_delivery: Optional[Decimal] = None,
        recent_activity_limit: Optional[int] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._hours_per_delivery = Decimal(
            str(hours_per_delivery or payment_settings.earnings.hours_per_delivery)
        )
        self._recent_limit = recent_activity_limit or payment_settings.earnings.recent_activity_limit

    def _boundaries(self) -> Dict[str, datetime]:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month = today.replace(day=1)
        previous_month = (month - timedelta(days=1)).replace(day=1)
        return {
            "today": today,
            "this_week": today - timedelta(days=today.weekday()),  # Monday
            "this_month": month,
            "previous_month": previous_month,
            "this_year": today.replace(month=1, day=1),
        }

    async def get_rider_earnings_summary(self, rider_id: int, currency: Optional[str] = None) -> RiderEarningsSummary:
        bounds = self._boundaries()
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.payment_repository
            lifetime = await repo.summarize(rider_id)
            pending = await repo.summarize(
                rider_id, statuses=(PaymentStatus.PENDING, PaymentStatus.PROCESSING)
            )
            windows = {
                key: await repo.summarize(rider_id, start_date=bounds[key])
                for key in ("today", "this_week", "this_month", "this_year")
            }
            previous = await repo.summarize(
                rider_id, start_date=bounds["previous_month"], end_date=bounds["this_month"]
            )
            recent = await repo.list_by_party(
                PartyRole.RIDER, rider_id,
                statuses=[PaymentStatus.COMPLETED],
                limit=self._recent_limit,
            )
            offers = await uow.offer_repository.get_many({r.offer_id for r in recent})
            performance = await self._performance(uow, rider_id)

        current = windows["this_month"]
        recent_activity = []
        for record in recent:
            offer = offers.get(record.offer_id)
            recent_activity.append(
                RecentActivity(
                    payment_id=record.id,
                    offer_id=record.offer_id,
                    rider_earnings=record.rider_earnings,
                    total_amount=record.total_amount,
                    currency=record.currency,
                    status=record.status,
                    created_at=record.created_at,
                    offer_title=(offer.title if offer and offer.title else "Delivery"),
                    pickup_address=offer.pickup_address if offer else None,
                    delivery_address=offer.delivery_address if offer else None,
                )
            )

        return RiderEarningsSummary(
            summary=EarningsSummary(
                total_earnings=lifetime.total_earnings,
                total_deliveries=lifetime.count,
                average_earnings_per_delivery=_avg(lifetime.total_earnings, lifetime.count),
                pending_earnings=pending.total_earnings,
                currency=currency or payment_settings.default_currency,
            ),
            time_based_earnings=TimeBasedEarnings(**{key: _window(t) for key, t in windows.items()}),
            performance_metrics=performance,
            recent_activity=recent_activity,
            trends=EarningsTrends(
                earnings_change=_change(current.total_earnings, previous.total_earnings),
                delivery_change=_change(current.count, previous.count),
                current_month_earnings=current.total_earnings,
                previous_month_earnings=previous.total_earnings,
                current_month_deliveries=current.count,
                previous_month_deliveries=previous.count,
            ),
        )

    async def get_rider_earnings_history(
        self,
        rider_id: int,
        filters: Union[EarningsHistoryFilters, dict, None] = None,
    ) -> EarningsHistoryPage:
        filters = parse_dto(EarningsHistoryFilters, filters)
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.payment_repository
            statuses = [filters.status]
            total = await repo.count_by_party(
                PartyRole.RIDER, rider_id,
                statuses=statuses,
                start_date=filters.start_date,
                end_date=filters.end_date,
            )
            records = await repo.list_by_party(
                PartyRole.RIDER, rider_id,
                statuses=statuses,
                start_date=filters.start_date,
                end_date=filters.end_date,
                skip=(filters.page - 1) * filters.limit,
                limit=filters.limit,
                sort_by=filters.sort_by,
                descending=filters.sort_order == "desc",
            )
            offers = await uow.offer_repository.get_many({r.offer_id for r in records})

        items: List[EarningsHistoryItem] = []
        for record in records:
            offer = offers.get(record.offer_id)
            items.append(
                EarningsHistoryItem(
                    payment_id=record.id,
                    offer_id=record.offer_id,
                    total_amount=record.total_amount,
                    platform_fee=record.platform_fee,
                    rider_earnings=record.rider_earnings,
                    currency=record.currency,
                    status=record.status,
                    created_at=record.created_at,
                    processed_at=record.processed_at,
                    offer=OfferSummary(
                        id=offer.id,
                        title=offer.title,
                        pickup_address=offer.pickup_address,
                        delivery_address=offer.delivery_address,
                        business_id=offer.business_id,
                        business_name=offer.business_name,
                    ) if offer else None,
                )
            )

        # Page summary covers the returned page only
        page_total = sum((item.rider_earnings for item in items), ZERO)
        return EarningsHistoryPage(
            earnings=items,
            pagination=Pagination.build(filters.page, filters.limit, int(total)),
            summary=PageSummary(
                total_earnings=page_total,
                total_deliveries=len(items),
                average_earnings=_avg(page_total, len(items)),
            ),
        )

    async def get_earnings_breakdown(
        self,
        rider_id: int,
        period: Union[EarningsPeriod, str] = EarningsPeriod.MONTHLY,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> EarningsBreakdown:
        try:
            period = EarningsPeriod(period)
        except ValueError:
            raise DomainValidationException(
                f"Unknown earnings period: {period}",
                field="period",
                details={"allowed": [p.value for p in EarningsPeriod]},
            )
        limit = limit or payment_settings.earnings.breakdown_limit
        if limit < 1:
            raise DomainValidationException("Breakdown limit must be positive", field="limit")

        async with self._uow_factory(readonly=True) as uow:
            buckets = await uow.payment_repository.group_by_period(
                rider_id, period, start_date=start_date, end_date=end_date, limit=limit
            )

        return EarningsBreakdown(
            period=period.value,
            breakdown=[
                BreakdownBucket(
                    period=b.period,
                    total_earnings=b.total_earnings,
                    total_amount=b.total_amount,
                    platform_fees=b.platform_fees,
                    delivery_count=b.count,
                    average_earnings=_avg(b.total_earnings, b.count),
                )
                for b in buckets
            ],
        )

    async def get_rider_performance_metrics(self, rider_id: int) -> PerformanceMetrics:
        async with self._uow_factory(readonly=True) as uow:
            return await self._performance(uow, rider_id)

    async def _performance(self, uow: AbstractUnitOfWork, rider_id: int) -> PerformanceMetrics:
        accepted = await uow.offer_repository.count_by_rider(rider_id, ACCEPTED_STATUSES)
        finished = await uow.offer_repository.count_by_rider(rider_id, FINISHED_STATUSES)
        completed = await uow.payment_repository.summarize(rider_id)
        patterns = await uow.payment_repository.group_by_weekday_hour(rider_id)

        completion_rate = ZERO
        if accepted:
            completion_rate = (Decimal(finished) / accepted * 100).quantize(CENT, rounding=ROUND_HALF_UP)

        hours = (self._hours_per_delivery * completed.count).quantize(CENT)
        efficiency = EarningsEfficiency(
            earnings_per_hour=(
                (completed.total_earnings / hours).quantize(CENT, rounding=ROUND_HALF_UP) if hours else ZERO
            ),
            earnings_per_delivery=_avg(completed.total_earnings, completed.count),
            estimated_total_hours=hours,
            total_deliveries=completed.count,
        )

        day_counts: Dict[str, List] = {}
        hour_counts: Dict[int, List] = {}
        for p in patterns:
            day = day_counts.setdefault(WEEKDAY_NAMES[p.day_of_week], [0, ZERO])
            day[0] += p.count
            day[1] += p.total_earnings
            hour = hour_counts.setdefault(p.hour, [0, ZERO])
            hour[0] += p.count
            hour[1] += p.total_earnings

        def bucket(count: int, total: Decimal) -> PatternBucket:
            return PatternBucket(delivery_count=count, total_earnings=total, average_earnings=_avg(total, count))

        return PerformanceMetrics(
            completion_rate=completion_rate,
            total_deliveries=finished,
            total_offers_accepted=accepted,
            earnings_efficiency=efficiency,
            delivery_patterns=DeliveryPatterns(
                day_patterns={name: bucket(*v) for name, v in day_counts.items()},
                hour_patterns={h: bucket(*v) for h, v in sorted(hour_counts.items())},
                total_patterns=len(patterns),
            ),
        )
