from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from cloudplane.core.config import Settings, get_settings
from cloudplane.domain.models import Base


def engine_kwargs(settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Pool sizing only applies to server databases; sqlite uses its own pool class.
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_size"] = max(1, int(settings.db_pool_size))
        kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
        kwargs["pool_timeout"] = 30
        kwargs["pool_recycle"] = 1800
    return kwargs


def build_engine(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(settings.database_url, **engine_kwargs(settings))


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    # Local and test bootstrap; production schemas are managed out of band.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def SessionLocal() -> AsyncSession:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = build_sessionmaker(get_engine())
    return _sessionmaker()


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
