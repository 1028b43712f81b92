"""Settlement engine: apply a graded wager to every challenge it was linked to.

Each linked challenge is updated in its own transaction. The bundle for one
challenge (streak, level flags, reward row, reward total, completion, link
after-snapshot) commits together or not at all. A link row settles exactly
once: its ``result`` starts NULL and is written in the same transaction, so
replaying a wager is a no-op for rows already committed.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from streakbet.challenges.audit import publish_challenge_event
from streakbet.challenges.catalog import DEFAULT_CATALOG, Catalog
from streakbet.challenges.errors import SettlementIncomplete
from streakbet.challenges.lifecycle import as_utc, utcnow, validate_transition
from streakbet.challenges.schemas import SettlementOutcome
from streakbet.db.models import (
    CHALLENGE_ACTIVE,
    CHALLENGE_COMPLETED,
    REWARD_PENDING,
    RESULT_LOST,
    RESULT_PUSH,
    RESULT_VOID,
    RESULT_WON,
    Challenge,
    ChallengeBet,
    ChallengeReward,
)

logger = structlog.get_logger()

SETTLEMENT_RESULTS = frozenset({RESULT_WON, RESULT_LOST, RESULT_PUSH, RESULT_VOID})


def normalize_result(result: str) -> str:
    """Map a graded bet result onto won/lost/push. Void counts as push."""
    value = result.strip().lower()
    if value not in SETTLEMENT_RESULTS:
        raise ValueError(f"Invalid settlement result: {result!r}")
    return RESULT_PUSH if value == RESULT_VOID else value


class SettlementEngine:
    """Applies wager results to linked challenges."""

    def __init__(
        self,
        db: AsyncSession,
        redis: object | None = None,
        catalog: Catalog | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.catalog = catalog or DEFAULT_CATALOG

    async def settle(self, bet_id: int, result: str) -> list[SettlementOutcome]:
        """Settle ``bet_id`` against all of its challenge links.

        Returns one outcome per link settled by this call; an empty list when
        the wager has no links or every link was already settled. Raises
        SettlementIncomplete after the other links were processed if any
        challenge's transaction failed.

        A failed link rolls back ``self.db``, which expires every object the
        caller loaded through that session.
        """
        result = normalize_result(result)
        rows = await self.db.execute(
            select(ChallengeBet.id, ChallengeBet.challenge_id)
            .where(ChallengeBet.bet_id == bet_id, ChallengeBet.result.is_(None))
            .order_by(ChallengeBet.id)
        )
        pending = rows.all()
        await self.db.commit()

        outcomes: list[SettlementOutcome] = []
        failed: list[int] = []
        for link_id, challenge_id in pending:
            try:
                outcome = await self._settle_link(link_id, result)
            except Exception:
                await self.db.rollback()
                logger.exception(
                    "challenge_settlement_failed",
                    bet_id=bet_id,
                    challenge_id=challenge_id,
                    result=result,
                )
                failed.append(challenge_id)
                continue
            if outcome is not None:
                outcomes.append(outcome)

        if failed:
            raise SettlementIncomplete(bet_id, failed, outcomes)
        return outcomes

    async def _settle_link(self, link_id: int, result: str) -> SettlementOutcome | None:
        """Settle one link in one transaction. None when nothing applies."""
        link = (
            await self.db.execute(
                select(ChallengeBet)
                .where(ChallengeBet.id == link_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        if link.is_settled:
            await self.db.commit()
            return None

        challenge = (
            await self.db.execute(
                select(Challenge)
                .where(Challenge.id == link.challenge_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        # Expired or cancelled between placement and settlement, or placed
        # before the challenge was reset.
        if challenge.status != CHALLENGE_ACTIVE or _predates_reset(link, challenge):
            await self.db.commit()
            return None

        now = utcnow()
        level_completed: int | None = None
        reward: ChallengeReward | None = None

        if result == RESULT_LOST:
            challenge.current_streak = 0
        elif result == RESULT_WON:
            challenge.current_streak += 1
            level_completed = self._level_reached(challenge)
            if level_completed is not None:
                reward = self._complete_level(challenge, level_completed, now)
        # push: nothing moves

        if result != RESULT_PUSH:
            challenge.updated_at = now

        link.result = result
        link.streak_after = challenge.current_streak
        link.level_after = challenge.current_level
        link.level_completed = level_completed
        link.settled_at = now

        outcome = SettlementOutcome(
            challenge_id=challenge.id,
            streak=challenge.current_streak,
            level=challenge.current_level,
            level_completed=level_completed,
        )
        completed = challenge.status == CHALLENGE_COMPLETED
        await self.db.commit()

        if reward is not None:
            logger.info(
                "challenge_level_completed",
                challenge_id=challenge.id,
                user_id=challenge.user_id,
                level=level_completed,
                reward=reward.amount,
                streak=challenge.current_streak,
            )
            await publish_challenge_event(
                self.redis, "level_completed",
                challenge_id=challenge.id, user_id=challenge.user_id,
                level=level_completed, amount=reward.amount,
            )
        if completed:
            logger.info("challenge_completed", challenge_id=challenge.id, user_id=challenge.user_id)
            await publish_challenge_event(
                self.redis, "completed",
                challenge_id=challenge.id, user_id=challenge.user_id,
                total_rewards=challenge.total_rewards_earned,
            )
        return outcome

    def _level_reached(self, challenge: Challenge) -> int | None:
        """The next uncompleted level if the streak now exactly meets its requirement."""
        level = challenge.progress.next_level
        if level is None:
            return None
        required = self.catalog.streak_required(level, challenge.difficulty)
        if required is None or challenge.current_streak != required:
            return None
        return level

    def _complete_level(self, challenge: Challenge, level: int, now: datetime) -> ChallengeReward:
        amount = self.catalog.reward_for_level(challenge.tier, level, challenge.difficulty)
        challenge.apply_progress(challenge.progress.complete(level))
        challenge.total_rewards_earned += amount

        reward = ChallengeReward(
            challenge_id=challenge.id,
            level=level,
            amount=amount,
            status=REWARD_PENDING,
            earned_at=now,
        )
        self.db.add(reward)

        if level == self.catalog.max_level:
            validate_transition(challenge.status, CHALLENGE_COMPLETED)
            challenge.status = CHALLENGE_COMPLETED
            challenge.completed_at = now
            challenge.active_slot = None
        return reward


def _predates_reset(link: ChallengeBet, challenge: Challenge) -> bool:
    """A link made before the challenge's last reset belongs to the old run."""
    if challenge.reset_at is None:
        return False
    return as_utc(link.created_at) < as_utc(challenge.reset_at)
