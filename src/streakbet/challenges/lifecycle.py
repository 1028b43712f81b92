"""Challenge lifecycle: purchase, expiry sweep and reset.

State progression: active -> completed | expired | cancelled, expired -> active.
The per-user active cap is enforced twice: purchases and resets lock the
owning user row (serializing them per user on PostgreSQL), and each active
challenge holds one of ``max_active`` slots guarded by a partial unique index.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from streakbet.challenges.audit import publish_challenge_event
from streakbet.challenges.catalog import BEGINNER, DEFAULT_CATALOG, Catalog
from streakbet.challenges.errors import (
    InvalidTier,
    InvalidTransition,
    LimitExceeded,
    NotEligible,
    NotFound,
)
from streakbet.challenges.schemas import ChallengeSummary, CreateStatus, LevelTarget
from streakbet.config import get_settings
from streakbet.db.models import (
    CHALLENGE_ACTIVE,
    CHALLENGE_CANCELLED,
    CHALLENGE_COMPLETED,
    CHALLENGE_EXPIRED,
    Challenge,
    User,
)

logger = structlog.get_logger()

CHALLENGE_TRANSITIONS: dict[str, list[str]] = {
    CHALLENGE_ACTIVE: [CHALLENGE_COMPLETED, CHALLENGE_EXPIRED, CHALLENGE_CANCELLED],
    CHALLENGE_EXPIRED: [CHALLENGE_ACTIVE],
    CHALLENGE_COMPLETED: [],
    CHALLENGE_CANCELLED: [],
}

# A slot collision means a concurrent purchase won; re-evaluate this many times.
_SLOT_ATTEMPTS = 3


def validate_transition(current_status: str, target_status: str) -> None:
    """Raise InvalidTransition unless current -> target is allowed."""
    if target_status not in CHALLENGE_TRANSITIONS.get(current_status, []):
        raise InvalidTransition(current_status, target_status)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def active_filter(now: datetime) -> tuple:
    """WHERE clauses for a challenge that is active and not yet past expiry."""
    return (Challenge.status == CHALLENGE_ACTIVE, Challenge.expires_at > now)


class ChallengeLifecycle:
    """Creates, expires and resets challenges for one database session."""

    def __init__(
        self,
        db: AsyncSession,
        redis: object | None = None,
        *,
        catalog: Catalog | None = None,
        max_active: int | None = None,
        duration_days: int | None = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.redis = redis
        self.catalog = catalog or DEFAULT_CATALOG
        self.max_active = settings.max_active_challenges if max_active is None else max_active
        days = settings.challenge_duration_days if duration_days is None else duration_days
        self.duration = timedelta(days=days)

    # ------------------------------------------------------------------
    # Cap
    # ------------------------------------------------------------------

    async def count_active(self, user_id: int, now: datetime | None = None) -> int:
        now = now or utcnow()
        result = await self.db.execute(
            select(func.count(Challenge.id)).where(Challenge.user_id == user_id, *active_filter(now))
        )
        return result.scalar_one()

    async def can_create(self, user_id: int) -> CreateStatus:
        current = await self.count_active(user_id)
        return CreateStatus(
            allowed=current < self.max_active,
            current=current,
            max_allowed=self.max_active,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create(self, user_id: int, tier_size: int, difficulty: str = BEGINNER) -> Challenge:
        """Purchase a new challenge. Called once payment capture succeeded."""
        diff = self.catalog.difficulty(difficulty)
        tier = self.catalog.tier_by_size(tier_size, difficulty)
        if diff is None or tier is None:
            raise InvalidTier(tier_size, difficulty)

        for attempt in range(1, _SLOT_ATTEMPTS + 1):
            now = utcnow()
            await self._lock_user(user_id)
            slot = await self._claim_slot(user_id, now)

            challenge = Challenge(
                user_id=user_id,
                tier=tier.size,
                difficulty=diff.key,
                min_odds=diff.min_odds,
                cost=tier.cost,
                reset_fee=tier.reset_fee,
                status=CHALLENGE_ACTIVE,
                current_streak=0,
                current_level=1,
                level_flags=0,
                total_rewards_earned=0,
                active_slot=slot,
                purchased_at=now,
                expires_at=now + self.duration,
                updated_at=now,
            )
            self.db.add(challenge)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning("challenge_slot_conflict", user_id=user_id, slot=slot, attempt=attempt)
                continue

            logger.info(
                "challenge_created",
                challenge_id=challenge.id,
                user_id=user_id,
                tier=tier.size,
                difficulty=diff.key,
            )
            await publish_challenge_event(
                self.redis, "created",
                challenge_id=challenge.id, user_id=user_id, tier=tier.size, difficulty=diff.key,
            )
            return challenge

        raise LimitExceeded(await self.count_active(user_id), self.max_active)

    async def expire_sweep(self, now: datetime | None = None) -> int:
        """Move every active challenge past its expiry to expired.

        Idempotent: a second run with the same ``now`` transitions nothing.
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(Challenge)
            .where(Challenge.status == CHALLENGE_ACTIVE, Challenge.expires_at <= now)
            .order_by(Challenge.id)
            .with_for_update(skip_locked=True)
        )
        stale = list(result.scalars().all())
        if not stale:
            await self.db.commit()
            return 0

        expired = [(c.id, c.user_id) for c in stale]
        _expire(stale, now)
        await self.db.commit()

        logger.info("challenges_expired", count=len(expired))
        for challenge_id, user_id in expired:
            await publish_challenge_event(self.redis, "expired", challenge_id=challenge_id, user_id=user_id)
        return len(expired)

    async def reset(self, challenge_id: int, user_id: int) -> Challenge:
        """Reactivate an expired challenge after its reset fee was paid.

        The streak restarts at zero; completed levels and earned rewards stay.
        Wagers linked before the reset never settle against the new run.
        """
        for attempt in range(1, _SLOT_ATTEMPTS + 1):
            now = utcnow()
            await self._lock_user(user_id)
            result = await self.db.execute(
                select(Challenge)
                .where(Challenge.id == challenge_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            challenge = result.scalar_one_or_none()
            if challenge is None:
                await self.db.commit()  # release the user lock
                raise NotFound("challenge", challenge_id)
            if challenge.user_id != user_id:
                await self.db.commit()
                raise NotEligible(challenge_id, "not owned by user")
            if challenge.status != CHALLENGE_EXPIRED:
                await self.db.commit()
                raise NotEligible(challenge_id, f"status is {challenge.status}")
            validate_transition(challenge.status, CHALLENGE_ACTIVE)

            slot = await self._claim_slot(user_id, now)
            challenge.status = CHALLENGE_ACTIVE
            challenge.current_streak = 0
            challenge.active_slot = slot
            challenge.expires_at = now + self.duration
            challenge.reset_at = now
            challenge.updated_at = now
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                logger.warning("challenge_slot_conflict", user_id=user_id, slot=slot, attempt=attempt)
                continue

            logger.info(
                "challenge_reset",
                challenge_id=challenge.id,
                user_id=user_id,
                reset_fee=challenge.reset_fee,
                current_level=challenge.current_level,
            )
            await publish_challenge_event(
                self.redis, "reset", challenge_id=challenge.id, user_id=user_id,
            )
            return challenge

        raise LimitExceeded(await self.count_active(user_id), self.max_active)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_active_challenges(self, user_id: int) -> list[Challenge]:
        result = await self.db.execute(
            select(Challenge)
            .where(Challenge.user_id == user_id, *active_filter(utcnow()))
            .options(selectinload(Challenge.rewards))
            .order_by(Challenge.purchased_at.desc(), Challenge.id.desc())
        )
        return list(result.scalars().all())

    async def get_challenge(self, challenge_id: int, user_id: int) -> Challenge:
        result = await self.db.execute(
            select(Challenge)
            .where(Challenge.id == challenge_id, Challenge.user_id == user_id)
            .options(selectinload(Challenge.rewards), selectinload(Challenge.bets))
        )
        challenge = result.scalar_one_or_none()
        if challenge is None:
            raise NotFound("challenge", challenge_id)
        return challenge

    async def challenge_history(self, user_id: int, limit: int = 10) -> list[Challenge]:
        result = await self.db.execute(
            select(Challenge)
            .where(Challenge.user_id == user_id)
            .options(selectinload(Challenge.rewards))
            .order_by(Challenge.purchased_at.desc(), Challenge.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    def summarize(self, challenge: Challenge, now: datetime | None = None) -> ChallengeSummary:
        now = now or utcnow()
        tier = self.catalog.tier_by_size(challenge.tier, challenge.difficulty)
        progress = challenge.progress
        seconds_left = (as_utc(challenge.expires_at) - now).total_seconds()

        target = None
        if progress.next_level is not None:
            required = self.catalog.streak_required(progress.next_level, challenge.difficulty)
            if required is not None:
                target = LevelTarget(level=progress.next_level, target=required)

        return ChallengeSummary(
            id=challenge.id,
            tier=challenge.tier,
            tier_label=tier.label if tier else f"{challenge.tier // 1000}K",
            difficulty=challenge.difficulty,
            min_odds=challenge.min_odds,
            status=challenge.status,
            current_streak=challenge.current_streak,
            current_level=challenge.current_level,
            level_flags=list(progress.flags),
            completed_levels=progress.highest_completed,
            total_rewards_earned=challenge.total_rewards_earned,
            tier_rewards=list(tier.rewards) if tier else [],
            next_level_target=target,
            days_remaining=max(0, math.ceil(seconds_left / 86400)),
            expires_at=challenge.expires_at,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _lock_user(self, user_id: int) -> None:
        """Take the per-user lock for the current transaction."""
        result = await self.db.execute(
            select(User.id).where(User.id == user_id).with_for_update()
        )
        if result.scalar_one_or_none() is None:
            await self.db.commit()
            raise NotFound("user", user_id)

    async def _claim_slot(self, user_id: int, now: datetime) -> int:
        """Return a free active slot for the user. Caller holds the user lock.

        The user's challenges that are still marked active past expiry are
        expired first so they stop holding slots.
        """
        stale = await self.db.execute(
            select(Challenge).where(
                Challenge.user_id == user_id,
                Challenge.status == CHALLENGE_ACTIVE,
                Challenge.expires_at <= now,
            )
        )
        _expire(stale.scalars().all(), now)
        result = await self.db.execute(
            select(Challenge.active_slot).where(
                Challenge.user_id == user_id,
                Challenge.status == CHALLENGE_ACTIVE,
            )
        )
        taken = list(result.scalars().all())
        if len(taken) >= self.max_active:
            await self.db.commit()  # keep the stale expiries, release the lock
            raise LimitExceeded(len(taken), self.max_active)
        return next(s for s in range(1, self.max_active + 1) if s not in taken)


def _expire(challenges: Iterable[Challenge], now: datetime) -> None:
    for challenge in challenges:
        validate_transition(challenge.status, CHALLENGE_EXPIRED)
        challenge.status = CHALLENGE_EXPIRED
        challenge.active_slot = None
        challenge.updated_at = now
