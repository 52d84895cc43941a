from __future__ import annotations

from typing import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from cloudplane.core.config import get_settings
from cloudplane.persistence.db import build_sessionmaker, create_schema


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Settings are cached per process; drop them so monkeypatched env vars take effect.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    # A throwaway sqlite file per test keeps integration tests isolated without Postgres.
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cloudplane.db'}")
    await create_schema(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(engine)


@pytest.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as db_session:
        yield db_session
