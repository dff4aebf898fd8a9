"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.offer_repository import SQLAlchemyOfferRepository
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentRecordRepository


SessionFactory = Callable[[], AsyncSession]


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """一个会话、一个事务，覆盖支付记录与 offer 两个仓储

    只读模式不显式开启事务，也不提交；查询结束后直接关闭会话。
    """

    def __init__(
        self,
        session_factory: SessionFactory = AsyncSessionLocal,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None
        self._transaction: Optional[AsyncSessionTransaction] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.payment_repository = SQLAlchemyPaymentRecordRepository(self.session)
        self.offer_repository = SQLAlchemyOfferRepository(self.session)
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self.session is not None:
                # close() also releases a transaction left open by a failed commit
                await self.session.close()
            self.session = None
            self._transaction = None
            self.payment_repository = None
            self.offer_repository = None

    async def commit(self) -> None:
        self._committed = True
        if self._readonly:
            return
        if self.session is not None and self.session.in_transaction():
            await self.session.commit()

    async def rollback(self) -> None:
        self._committed = False
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()


def sqlalchemy_uow_factory(session_factory: SessionFactory = AsyncSessionLocal) -> Callable[..., SQLAlchemyUnitOfWork]:
    """返回 uow_factory(readonly=...)，绑定到指定的 session 工厂（测试或独立事件循环使用）"""

    def factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return factory
