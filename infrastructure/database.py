"""
数据库配置和连接管理
"""
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}. 请使用 async 驱动或更新 DATABASE__URL")
    return url.set(drivername=ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """按配置创建异步引擎；PostgreSQL 连接池在取用前探活"""
    url = build_async_url(database_url or settings.database.url)
    options = {"echo": settings.database.echo}
    if make_url(url).get_backend_name() == "postgresql":
        options["pool_pre_ping"] = True
    return create_async_engine(url, **options)


# 长驻事件循环（worker 之外的调用方）共享的引擎与会话工厂
engine = create_engine()

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables(bind: Optional[AsyncEngine] = None) -> None:
    """
    创建所有表（开发/测试用，生产环境使用 alembic 迁移）
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
