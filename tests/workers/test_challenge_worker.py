"""Challenge worker tasks — arq job functions and cron wiring."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from streakbet.challenges.lifecycle import utcnow
from streakbet.challenges.linker import link_bet
from streakbet.db.models import Challenge
from streakbet.workers.challenge_worker import (
    WorkerSettings,
    expire_challenges,
    settle_pending,
)


class TestWorkerSettings:
    def test_jobs_registered(self):
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"expire_challenges", "settle_pending"}
        assert len(WorkerSettings.cron_jobs) == 2


class TestWorkerTasks:
    @pytest.mark.asyncio
    async def test_expire_challenges(self, db_session, user, make_challenge, redis_mock):
        challenge = await make_challenge(user.id)
        challenge.expires_at = utcnow() - timedelta(hours=1)
        await db_session.commit()

        assert await expire_challenges({"redis": redis_mock}) == 1
        assert await expire_challenges({"redis": redis_mock}) == 0

        result = await db_session.execute(
            select(Challenge.status).where(Challenge.id == challenge.id)
        )
        assert result.scalar_one() == "expired"

    @pytest.mark.asyncio
    async def test_settle_pending(self, db_session, user, make_challenge, make_bet):
        challenge = await make_challenge(user.id)
        bet = await make_bet(user.id, odds=1.9, result="won")
        await link_bet(db_session, bet.id, user.id)

        assert await settle_pending({}) == 0

        result = await db_session.execute(
            select(Challenge.current_streak).where(Challenge.id == challenge.id)
        )
        assert result.scalar_one() == 1
