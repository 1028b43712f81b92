"""Integration tests for linking wagers to active challenges."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from streakbet.challenges.errors import NotEligible, NotFound
from streakbet.challenges.lifecycle import ChallengeLifecycle, utcnow
from streakbet.challenges import linker
from streakbet.challenges.linker import link_bet
from streakbet.db.models import ChallengeBet


class TestLinkBet:
    @pytest.mark.asyncio
    async def test_odds_filter_per_challenge(self, db_session, user, make_challenge, make_bet):
        """A 1.8 wager counts for beginner (min 1.5) but not pro (min 2.0)."""
        pro = await make_challenge(user.id, 1000, "pro")
        beginner = await make_challenge(user.id, 1000, "beginner")
        bet = await make_bet(user.id, odds=1.8)

        links = await link_bet(db_session, bet.id, user.id)

        assert [link.challenge_id for link in links] == [beginner.id]
        assert pro.id not in {link.challenge_id for link in links}

    @pytest.mark.asyncio
    async def test_min_odds_inclusive(self, db_session, user, make_challenge, make_bet):
        challenge = await make_challenge(user.id, 1000, "pro")
        bet = await make_bet(user.id, odds=2.0)
        links = await link_bet(db_session, bet.id, user.id)
        assert [link.challenge_id for link in links] == [challenge.id]

    @pytest.mark.asyncio
    async def test_snapshot_before(self, db_session, user, make_challenge, make_bet):
        challenge = await make_challenge(user.id, streak=7, level_flags=0b0011)
        bet = await make_bet(user.id, odds=1.9)

        (link,) = await link_bet(db_session, bet.id, user.id)

        assert link.challenge_id == challenge.id
        assert link.streak_before == 7
        assert link.level_before == 3
        assert link.result is None
        assert link.streak_after is None
        assert not link.is_settled

    @pytest.mark.asyncio
    async def test_linking_is_idempotent(self, db_session, user, make_challenge, make_bet):
        await make_challenge(user.id)
        await make_challenge(user.id, 5000)
        bet = await make_bet(user.id, odds=1.9)

        first = await link_bet(db_session, bet.id, user.id)
        second = await link_bet(db_session, bet.id, user.id)

        assert len(first) == 2
        assert [link.id for link in second] == [link.id for link in first]
        count = await db_session.execute(
            select(func.count(ChallengeBet.id)).where(ChallengeBet.bet_id == bet.id)
        )
        assert count.scalar_one() == 2

    @pytest.mark.asyncio
    async def test_new_challenge_picks_up_existing_bet(self, db_session, user, make_challenge, make_bet):
        first = await make_challenge(user.id)
        bet = await make_bet(user.id, odds=1.9)
        await link_bet(db_session, bet.id, user.id)

        second = await make_challenge(user.id, 5000)
        links = await link_bet(db_session, bet.id, user.id)
        assert [link.challenge_id for link in links] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_no_active_challenges(self, db_session, user, make_bet):
        bet = await make_bet(user.id, odds=3.0)
        assert await link_bet(db_session, bet.id, user.id) == []

    @pytest.mark.asyncio
    async def test_past_expiry_challenge_not_linked(self, db_session, user, make_challenge, make_bet):
        challenge = await make_challenge(user.id)
        challenge.expires_at = utcnow() - timedelta(seconds=1)
        await db_session.commit()
        bet = await make_bet(user.id, odds=1.9)

        assert await link_bet(db_session, bet.id, user.id) == []

    @pytest.mark.asyncio
    async def test_other_users_challenges_ignored(self, db_session, make_user, make_challenge, make_bet):
        alice = await make_user()
        bob = await make_user()
        await make_challenge(bob.id)
        bet = await make_bet(alice.id, odds=1.9)
        assert await link_bet(db_session, bet.id, alice.id) == []

    @pytest.mark.asyncio
    async def test_missing_bet(self, db_session, user):
        with pytest.raises(NotFound):
            await link_bet(db_session, 4242, user.id)

    @pytest.mark.asyncio
    async def test_bet_of_another_user(self, db_session, make_user, make_bet):
        alice = await make_user()
        bob = await make_user()
        bet = await make_bet(alice.id)
        await ChallengeLifecycle(db_session).create(bob.id, 1000)
        with pytest.raises(NotEligible):
            await link_bet(db_session, bet.id, bob.id)

    @pytest.mark.asyncio
    async def test_conflicting_link_retried(self, db_session, user, make_challenge, make_bet, monkeypatch):
        """A link written by a concurrent call between read and commit is picked up on retry."""
        first = await make_challenge(user.id)
        first_id = first.id
        bet = await make_bet(user.id, odds=1.9)
        bet_id = bet.id
        await link_bet(db_session, bet_id, user.id)
        second = await make_challenge(user.id, 5000)
        second_id = second.id

        real_links_for = linker._links_for
        calls = {"n": 0}

        async def _stale_links_for(db, bet_id, challenge_ids):  # type: ignore[no-untyped-def]
            calls["n"] += 1
            if calls["n"] == 1:
                return []
            return await real_links_for(db, bet_id, challenge_ids)

        monkeypatch.setattr(linker, "_links_for", _stale_links_for)

        links = await link_bet(db_session, bet_id, user.id)

        assert [link.challenge_id for link in links] == [first_id, second_id]
        assert calls["n"] == 2
        count = await db_session.execute(
            select(func.count(ChallengeBet.id)).where(ChallengeBet.bet_id == bet_id)
        )
        assert count.scalar_one() == 2
