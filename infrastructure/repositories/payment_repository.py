"""
支付记录仓储实现 - 使用SQLAlchemy实现数据访问与聚合查询
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, extract, func, literal_column, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidPaymentStateException,
    PaymentAlreadyExistsException,
)
from domain.payment.entity import CENT, PartyRole, PaymentRecord, PaymentStatus
from domain.payment.repository import (
    EarningsPeriod,
    EarningsTotals,
    PaymentRecordRepository,
    PatternTotals,
    PeriodTotals,
    StatusTotals,
)
from infrastructure.models.payment import PaymentRecordModel


logger = get_logger(__name__)

ZERO = Decimal("0.00")

_SORT_COLUMNS = {
    "created_at": PaymentRecordModel.created_at,
    "rider_earnings": PaymentRecordModel.rider_earnings,
    "total_amount": PaymentRecordModel.total_amount,
}


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SQLAlchemyPaymentRecordRepository(PaymentRecordRepository):
    """支付记录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentRecordModel) -> PaymentRecord:
        """将数据库模型转换为领域实体"""
        return PaymentRecord(
            id=model.id,
            offer_id=model.offer_id,
            business_id=model.business_id,
            rider_id=model.rider_id,
            total_amount=_to_decimal(model.total_amount),
            platform_fee=_to_decimal(model.platform_fee),
            rider_earnings=_to_decimal(model.rider_earnings),
            currency=model.currency,
            payment_method=model.payment_method,
            payment_method_details=dict(model.payment_method_details or {}),
            status=PaymentStatus(model.status),
            transaction_id=model.transaction_id,
            retry_count=model.retry_count,
            max_retries=model.max_retries,
            retry_delay=model.retry_delay,
            failure_reason=model.failure_reason,
            next_retry_at=model.next_retry_at,
            last_attempt_at=model.last_attempt_at,
            refund_amount=_to_decimal(model.refund_amount) if model.refund_amount is not None else None,
            refund_reason=model.refund_reason,
            refund_id=model.refund_id,
            refunded_at=model.refunded_at,
            metadata=dict(model.extra_metadata or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
            processed_at=model.processed_at,
        )

    def _to_values(self, entity: PaymentRecord) -> Dict[str, Any]:
        """可变字段（UPDATE 使用）"""
        return {
            "status": entity.status.value,
            "transaction_id": entity.transaction_id,
            "retry_count": entity.retry_count,
            "failure_reason": entity.failure_reason,
            "next_retry_at": _utc(entity.next_retry_at),
            "last_attempt_at": _utc(entity.last_attempt_at),
            "refund_amount": entity.refund_amount,
            "refund_reason": entity.refund_reason,
            "refund_id": entity.refund_id,
            "refunded_at": _utc(entity.refunded_at),
            "extra_metadata": dict(entity.metadata or {}),
            "processed_at": _utc(entity.processed_at),
            "updated_at": _utc(entity.updated_at) or datetime.now(timezone.utc),
        }

    def _to_model(self, entity: PaymentRecord) -> PaymentRecordModel:
        """将领域实体转换为数据库模型"""
        return PaymentRecordModel(
            id=entity.id,
            offer_id=entity.offer_id,
            business_id=entity.business_id,
            rider_id=entity.rider_id,
            total_amount=entity.total_amount,
            platform_fee=entity.platform_fee,
            rider_earnings=entity.rider_earnings,
            currency=entity.currency,
            payment_method=entity.payment_method.value,
            payment_method_details=dict(entity.payment_method_details or {}),
            max_retries=entity.max_retries,
            retry_delay=entity.retry_delay,
            created_at=_utc(entity.created_at) or datetime.now(timezone.utc),
            **self._to_values(entity),
        )

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """创建支付记录"""
        try:
            db_record = self._to_model(record)
            self.session.add(db_record)
            await self.session.flush()  # 获取生成的ID
            await self.session.refresh(db_record)
            return self._to_entity(db_record)
        except IntegrityError as e:
            await self.session.rollback()
            if "offer_id" in str(e).lower() or "unique" in str(e).lower():
                logger.warning(
                    "create_payment_conflict",
                    field="offer_id",
                    offer_id=record.offer_id)
                raise PaymentAlreadyExistsException(record.offer_id)
            raise

    async def get_by_id(self, payment_id: int) -> Optional[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel)
            .where(PaymentRecordModel.id == payment_id)
            .execution_options(populate_existing=True)
        )
        db_record = result.scalar_one_or_none()
        return self._to_entity(db_record) if db_record else None

    async def get_by_offer_id(self, offer_id: int) -> Optional[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel).where(PaymentRecordModel.offer_id == offer_id)
        )
        db_record = result.scalar_one_or_none()
        return self._to_entity(db_record) if db_record else None

    async def exists_by_offer_id(self, offer_id: int) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(PaymentRecordModel).where(PaymentRecordModel.offer_id == offer_id)
        )
        return int(result.scalar_one()) > 0

    async def update(
        self,
        record: PaymentRecord,
        *,
        expected_status: Optional[PaymentStatus] = None,
        expected_retry_count: Optional[int] = None,
    ) -> PaymentRecord:
        """更新支付记录（可选条件更新，行数为 0 表示记录已被并发修改）"""
        conditions = [PaymentRecordModel.id == record.id]
        if expected_status is not None:
            conditions.append(PaymentRecordModel.status == PaymentStatus(expected_status).value)
        if expected_retry_count is not None:
            conditions.append(PaymentRecordModel.retry_count == expected_retry_count)

        result = await self.session.execute(
            update(PaymentRecordModel)
            .where(*conditions)
            .values({getattr(PaymentRecordModel, k): v for k, v in self._to_values(record).items()})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "update_payment_conflict",
                payment_id=record.id,
                expected_status=expected_status.value if expected_status else None,
                expected_retry_count=expected_retry_count,
            )
            raise InvalidPaymentStateException(
                f"Payment {record.id} was modified concurrently",
                current_status=record.status.value,
                details={
                    "payment_id": record.id,
                    "expected_status": expected_status.value if expected_status else None,
                },
            )
        updated = await self.get_by_id(record.id)
        return updated if updated else record

    def _party_filters(
        self,
        role: PartyRole,
        user_id: int,
        statuses: Optional[Iterable[PaymentStatus]],
        start_date: Optional[datetime],
        end_date: Optional[datetime],
    ) -> List[Any]:
        column = (
            PaymentRecordModel.rider_id
            if PartyRole(role) == PartyRole.RIDER
            else PaymentRecordModel.business_id
        )
        filters: List[Any] = [column == user_id]
        if statuses:
            filters.append(PaymentRecordModel.status.in_([PaymentStatus(s).value for s in statuses]))
        if start_date is not None:
            filters.append(PaymentRecordModel.created_at >= _utc(start_date))
        if end_date is not None:
            filters.append(PaymentRecordModel.created_at <= _utc(end_date))
        return filters

    async def list_by_party(
        self,
        role: PartyRole,
        user_id: int,
        *,
        statuses: Optional[Iterable[PaymentStatus]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 20,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> List[PaymentRecord]:
        sort_column = _SORT_COLUMNS.get(sort_by, PaymentRecordModel.created_at)
        query = select(PaymentRecordModel).where(
            *self._party_filters(role, user_id, statuses, start_date, end_date)
        )
        # 再按ID排序，确保分页稳定
        if descending:
            query = query.order_by(sort_column.desc(), PaymentRecordModel.id.desc())
        else:
            query = query.order_by(sort_column.asc(), PaymentRecordModel.id.asc())
        result = await self.session.execute(query.offset(skip).limit(limit))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_party(
        self,
        role: PartyRole,
        user_id: int,
        *,
        statuses: Optional[Iterable[PaymentStatus]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(PaymentRecordModel)
            .where(*self._party_filters(role, user_id, statuses, start_date, end_date))
        )
        return int(result.scalar_one())

    async def list_retryable(self, now: datetime, limit: int = 100) -> List[PaymentRecord]:
        query = (
            select(PaymentRecordModel)
            .where(
                PaymentRecordModel.status == PaymentStatus.FAILED.value,
                PaymentRecordModel.retry_count < PaymentRecordModel.max_retries,
                or_(
                    PaymentRecordModel.next_retry_at.is_(None),
                    PaymentRecordModel.next_retry_at <= _utc(now),
                ),
            )
            .order_by(PaymentRecordModel.next_retry_at.asc(), PaymentRecordModel.id.asc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def aggregate_by_status(self, role: PartyRole, user_id: int) -> Dict[PaymentStatus, StatusTotals]:
        query = (
            select(
                PaymentRecordModel.status,
                func.count(PaymentRecordModel.id),
                func.coalesce(func.sum(PaymentRecordModel.total_amount), 0),
                func.coalesce(func.sum(PaymentRecordModel.refund_amount), 0),
            )
            .where(*self._party_filters(role, user_id, None, None, None))
            .group_by(PaymentRecordModel.status)
        )
        result = await self.session.execute(query)
        totals: Dict[PaymentStatus, StatusTotals] = {}
        for status, count, amount, refunded in result.all():
            status = PaymentStatus(status)
            totals[status] = StatusTotals(
                status=status,
                count=int(count),
                total_amount=_to_decimal(amount),
                refunded_amount=_to_decimal(refunded),
            )
        return totals

    def _rider_filters(
        self,
        rider_id: int,
        statuses: Iterable[PaymentStatus],
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        *,
        inclusive_end: bool = False,
    ) -> List[Any]:
        filters: List[Any] = [
            PaymentRecordModel.rider_id == rider_id,
            PaymentRecordModel.status.in_([PaymentStatus(s).value for s in statuses]),
        ]
        if start_date is not None:
            filters.append(PaymentRecordModel.created_at >= _utc(start_date))
        if end_date is not None:
            if inclusive_end:
                filters.append(PaymentRecordModel.created_at <= _utc(end_date))
            else:
                filters.append(PaymentRecordModel.created_at < _utc(end_date))
        return filters

    async def summarize(
        self,
        rider_id: int,
        *,
        statuses: Iterable[PaymentStatus] = (PaymentStatus.COMPLETED,),
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> EarningsTotals:
        query = select(
            func.count(PaymentRecordModel.id),
            func.coalesce(func.sum(PaymentRecordModel.rider_earnings), 0),
            func.coalesce(func.sum(PaymentRecordModel.total_amount), 0),
            func.coalesce(func.sum(PaymentRecordModel.platform_fee), 0),
        ).where(and_(*self._rider_filters(rider_id, statuses, start_date, end_date)))
        count, earnings, amount, fees = (await self.session.execute(query)).one()
        return EarningsTotals(
            count=int(count or 0),
            total_earnings=_to_decimal(earnings),
            total_amount=_to_decimal(amount),
            platform_fees=_to_decimal(fees),
        )

    def _period_key(self, period: EarningsPeriod):
        """按方言生成日期截断后的分桶键（YYYY-MM-DD / 周一日期 / YYYY-MM）"""
        column = PaymentRecordModel.created_at
        dialect = self.session.get_bind().dialect.name
        # 格式串使用字面量，保证 SELECT 与 GROUP BY 中的表达式完全一致
        if dialect == "postgresql":
            if period == EarningsPeriod.DAILY:
                return func.to_char(column, literal_column("'YYYY-MM-DD'"))
            if period == EarningsPeriod.WEEKLY:
                return func.to_char(func.date_trunc(literal_column("'week'"), column), literal_column("'YYYY-MM-DD'"))
            return func.to_char(column, literal_column("'YYYY-MM'"))
        if dialect == "sqlite":
            if period == EarningsPeriod.DAILY:
                return func.strftime(literal_column("'%Y-%m-%d'"), column)
            if period == EarningsPeriod.WEEKLY:
                return func.date(column, literal_column("'weekday 0'"), literal_column("'-6 days'"))
            return func.strftime(literal_column("'%Y-%m'"), column)
        raise NotImplementedError(f"earnings breakdown is not supported on {dialect}")

    async def group_by_period(
        self,
        rider_id: int,
        period: EarningsPeriod,
        *,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 12,
    ) -> List[PeriodTotals]:
        bucket = self._period_key(EarningsPeriod(period)).label("period")
        query = (
            select(
                bucket,
                func.count(PaymentRecordModel.id),
                func.coalesce(func.sum(PaymentRecordModel.rider_earnings), 0),
                func.coalesce(func.sum(PaymentRecordModel.total_amount), 0),
                func.coalesce(func.sum(PaymentRecordModel.platform_fee), 0),
            )
            .where(
                *self._rider_filters(
                    rider_id, (PaymentStatus.COMPLETED,), start_date, end_date, inclusive_end=True
                )
            )
            .group_by(bucket)
            .order_by(bucket.desc())
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [
            PeriodTotals(
                period=str(key),
                count=int(count),
                total_earnings=_to_decimal(earnings),
                total_amount=_to_decimal(amount),
                platform_fees=_to_decimal(fees),
            )
            for key, count, earnings, amount, fees in result.all()
        ]

    async def group_by_weekday_hour(self, rider_id: int) -> List[PatternTotals]:
        dow = extract("dow", PaymentRecordModel.created_at).label("dow")
        hour = extract("hour", PaymentRecordModel.created_at).label("hour")
        query = (
            select(
                dow,
                hour,
                func.count(PaymentRecordModel.id),
                func.coalesce(func.sum(PaymentRecordModel.rider_earnings), 0),
            )
            .where(*self._rider_filters(rider_id, (PaymentStatus.COMPLETED,), None, None))
            .group_by(dow, hour)
            .order_by(dow, hour)
        )
        result = await self.session.execute(query)
        return [
            PatternTotals(
                day_of_week=int(d),
                hour=int(h),
                count=int(count),
                total_earnings=_to_decimal(earnings),
            )
            for d, h, count, earnings in result.all()
        ]
