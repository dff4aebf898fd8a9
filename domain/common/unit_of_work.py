"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.offer.repository import OfferRepository
from domain.payment.repository import PaymentRecordRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    支付记录与 offer 的变更在同一事务内提交（例如支付成功时 offer 同步完成）。
    只读模式用于查询与统计，退出时不提交。
    """

    payment_repository: PaymentRecordRepository
    offer_repository: OfferRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.payment_repository = None  # type: ignore[assignment]
        self.offer_repository = None  # type: ignore[assignment]

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        elif not self._readonly and not self._committed:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
