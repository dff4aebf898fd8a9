"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .entity import PartyRole, PaymentRecord, PaymentStatus


class EarningsPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class EarningsTotals:
    """聚合结果：记录数与金额合计"""
    count: int = 0
    total_earnings: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")
    platform_fees: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class StatusTotals:
    status: PaymentStatus
    count: int
    total_amount: Decimal
    refunded_amount: Decimal


@dataclass(frozen=True)
class PeriodTotals:
    period: str
    count: int
    total_earnings: Decimal
    total_amount: Decimal
    platform_fees: Decimal


@dataclass(frozen=True)
class PatternTotals:
    day_of_week: int  # 0 = Sunday
    hour: int
    count: int
    total_earnings: Decimal


class PaymentRecordRepository(ABC):
    """支付记录仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """创建支付记录；offer_id 唯一冲突时抛出 PaymentAlreadyExistsException"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[PaymentRecord]:
        pass

    @abstractmethod
    async def get_by_offer_id(self, offer_id: int) -> Optional[PaymentRecord]:
        pass

    @abstractmethod
    async def exists_by_offer_id(self, offer_id: int) -> bool:
        """检查 offer 是否已有支付记录"""
        pass

    @abstractmethod
    async def update(
        self,
        record: PaymentRecord,
        *,
        expected_status: Optional[PaymentStatus] = None,
        expected_retry_count: Optional[int] = None,
    ) -> PaymentRecord:
        """
        更新支付记录

        传入 expected_* 时执行条件更新，数据库中的记录已被其他事务改变则抛出
        InvalidPaymentStateException。
        """
        pass

    @abstractmethod
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
        """按业务方或骑手分页查询"""
        pass

    @abstractmethod
    async def count_by_party(
        self,
        role: PartyRole,
        user_id: int,
        *,
        statuses: Optional[Iterable[PaymentStatus]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> int:
        pass

    @abstractmethod
    async def list_retryable(self, now: datetime, limit: int = 100) -> List[PaymentRecord]:
        """失败且仍有重试次数、并已到达 next_retry_at 的记录，最早到期在前"""
        pass

    @abstractmethod
    async def aggregate_by_status(self, role: PartyRole, user_id: int) -> Dict[PaymentStatus, StatusTotals]:
        pass

    @abstractmethod
    async def summarize(
        self,
        rider_id: int,
        *,
        statuses: Iterable[PaymentStatus] = (PaymentStatus.COMPLETED,),
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> EarningsTotals:
        """骑手收益汇总；时间窗口为 [start_date, end_date)"""
        pass

    @abstractmethod
    async def group_by_period(
        self,
        rider_id: int,
        period: EarningsPeriod,
        *,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 12,
    ) -> List[PeriodTotals]:
        """已完成记录按日/周/月分桶，最近的桶在前"""
        pass

    @abstractmethod
    async def group_by_weekday_hour(self, rider_id: int) -> List[PatternTotals]:
        """已完成记录按 (星期, 小时) 分组"""
        pass
