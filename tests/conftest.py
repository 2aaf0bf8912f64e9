"""Shared fixtures for the sync engine tests.

Provides:
- A file-backed SQLite engine (aiosqlite) with the sync tables created
- A session_factory in the same shape the SQL stores take in production
- The in-memory sync harness from tests.fakes
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

import src.erp_sync.sync.models  # noqa: F401
from src.erp_sync.core.database import SyncBase
from tests.fakes import SyncHarness, build_harness


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite engine with all sync tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SyncBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Async generator factory yielding sessions bound to the test engine."""

    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return _factory


@pytest.fixture
def harness() -> SyncHarness:
    return build_harness()
