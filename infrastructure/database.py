"""
数据库配置和连接管理
"""
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


def build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新DATABASE_URL")

    return url.set(drivername=driver_map[drivername]).render_as_string(hide_password=False)


def _connect_args(async_url: str) -> dict[str, Any]:
    """每条语句的超时（仅 PostgreSQL）"""
    if make_url(async_url).get_backend_name() != "postgresql":
        return {}
    timeout_ms = int(settings.DB_STATEMENT_TIMEOUT_SECONDS * 1000)
    return {"server_settings": {"statement_timeout": str(timeout_ms)}}


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    async_url = build_async_url(database_url)
    return create_async_engine(
        async_url,
        echo=echo,
        pool_pre_ping=True,
        connect_args=_connect_args(async_url),
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False)


engine = build_engine(settings.database_url, echo=settings.DB_ECHO)

# 创建异步会话工厂
AsyncSessionLocal = build_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话（不自动提交，由调用方控制事务）"""
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables(bind: AsyncEngine = engine):
    """
    创建所有表

    根据models中定义的所有模型创建对应的数据库表
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables(bind: AsyncEngine = engine):
    """
    删除所有表

    警告：仅用于测试环境，会删除所有数据！
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
