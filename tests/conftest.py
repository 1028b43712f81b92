"""Shared test fixtures.

Tests run against a throwaway SQLite file by default. Point
STREAKBET_TEST_DATABASE_URL at a PostgreSQL database to exercise the row locks.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.challenges.catalog import BEGINNER
from streakbet.challenges.lifecycle import ChallengeLifecycle
from streakbet.database import close_db, get_engine, get_session_factory, init_db
from streakbet.db import models  # noqa: F401
from streakbet.db.base import Base
from streakbet.db.models import RESULT_PENDING, Bet, Challenge, User


def _database_url(tmp_path) -> str:  # type: ignore[no-untyped-def]
    return os.environ.get("STREAKBET_TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'streakbet.db'}"


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:  # type: ignore[no-untyped-def]
    """Fresh schema per test; yields the session factory."""
    await init_db(_database_url(tmp_path))
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:  # type: ignore[no-untyped-def]
    """Get a direct database session for test assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Stand-in for the audit Redis client; records publish calls."""
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=1)
    return mock


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    counter = {"n": 0}

    async def _make(email: str | None = None) -> User:
        counter["n"] += 1
        user = User(email=email or f"player{counter['n']}@example.com")
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def user(make_user) -> User:  # type: ignore[no-untyped-def]
    return await make_user()


@pytest_asyncio.fixture
async def make_bet(db_session: AsyncSession) -> Callable[..., Awaitable[Bet]]:
    async def _make(user_id: int, odds: float = 1.9, result: str = RESULT_PENDING) -> Bet:
        bet = Bet(user_id=user_id, odds_decimal=odds, stake=10.0, result=result)
        db_session.add(bet)
        await db_session.commit()
        return bet

    return _make


@pytest_asyncio.fixture
async def make_challenge(db_session: AsyncSession) -> Callable[..., Awaitable[Challenge]]:
    """Purchase a challenge, then optionally force its state for the scenario."""

    async def _make(
        user_id: int,
        tier: int = 1000,
        difficulty: str = BEGINNER,
        *,
        streak: int = 0,
        level_flags: int = 0,
        total_rewards: int = 0,
    ) -> Challenge:
        challenge = await ChallengeLifecycle(db_session).create(user_id, tier, difficulty)
        if streak or level_flags or total_rewards:
            challenge.current_streak = streak
            challenge.level_flags = level_flags
            challenge.current_level = challenge.progress.current_level
            challenge.total_rewards_earned = total_rewards
            await db_session.commit()
        return challenge

    return _make
