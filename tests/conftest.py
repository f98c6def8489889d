"""Shared fixtures for the meeting minutes tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from factories import FakeStorage, InMemoryMinutesRepository, make_settings
from src.team_admin.config import Settings
from src.team_admin.core.database import Base
from src.team_admin.meetings import models  # noqa: F401
from src.team_admin.services.gsuite.models import SentEmailResult


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def repo() -> InMemoryMinutesRepository:
    return InMemoryMinutesRepository()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def gmail() -> MagicMock:
    service = MagicMock()
    service.send_email = AsyncMock(
        return_value=SentEmailResult(message_id="msg-1", thread_id="thr-1")
    )
    return service


@pytest.fixture
def llm() -> MagicMock:
    service = MagicMock()
    service.completion = AsyncMock()
    return service


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Backoff sleep replacement that records requested delays."""
    return AsyncMock(return_value=None)


@pytest_asyncio.fixture
async def sqlite_session_factory(tmp_path):
    """Session factory over a fresh SQLite database file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'minutes.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, expire_on_commit=False)

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with maker() as session:
            yield session

    factory.maker = maker
    yield factory
    await engine.dispose()
