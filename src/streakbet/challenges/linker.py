"""Attach a newly placed wager to the owner's active challenges."""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from streakbet.challenges.errors import NotEligible, NotFound
from streakbet.challenges.lifecycle import active_filter, utcnow
from streakbet.db.models import Bet, Challenge, ChallengeBet

logger = structlog.get_logger()

_LINK_ATTEMPTS = 2


async def link_bet(
    db: AsyncSession,
    bet_id: int,
    user_id: int,
    now: datetime | None = None,
) -> list[ChallengeBet]:
    """Link a wager to every active challenge of its owner.

    A challenge only counts the wager when ``odds_decimal >= min_odds``; the
    wager stays an ordinary standalone bet either way. Linking is idempotent
    per (challenge, bet). Returns all links of the wager across the user's
    active challenges, pre-existing and new.
    """
    now = now or utcnow()

    bet = await db.get(Bet, bet_id)
    if bet is None:
        raise NotFound("bet", bet_id)
    if bet.user_id != user_id:
        raise NotEligible(bet_id, "bet belongs to another user")

    odds = bet.odds_decimal
    challenge_ids: list[int] = []
    for attempt in range(1, _LINK_ATTEMPTS + 1):
        result = await db.execute(
            select(Challenge)
            .where(Challenge.user_id == user_id, *active_filter(now))
            .order_by(Challenge.id)
        )
        challenges = list(result.scalars().all())
        if not challenges:
            return []

        challenge_ids = [c.id for c in challenges]
        existing = await _links_for(db, bet_id, challenge_ids)
        linked_ids = {link.challenge_id for link in existing}

        created: list[ChallengeBet] = []
        for challenge in challenges:
            if challenge.id in linked_ids:
                continue
            if odds < challenge.min_odds:
                logger.info(
                    "bet_below_min_odds",
                    bet_id=bet_id,
                    challenge_id=challenge.id,
                    odds=odds,
                    min_odds=challenge.min_odds,
                )
                continue
            link = ChallengeBet(
                challenge_id=challenge.id,
                bet_id=bet_id,
                streak_before=challenge.current_streak,
                level_before=challenge.current_level,
                created_at=now,
            )
            db.add(link)
            created.append(link)

        if not created:
            return existing

        try:
            await db.commit()
        except IntegrityError:
            # A concurrent placement call linked some of these first; the
            # rollback discarded every new link, so re-read and try again.
            await db.rollback()
            logger.warning("bet_link_conflict", bet_id=bet_id, user_id=user_id, attempt=attempt)
            continue

        for link in created:
            logger.info(
                "bet_linked",
                bet_id=bet_id,
                challenge_id=link.challenge_id,
                streak_before=link.streak_before,
                level_before=link.level_before,
            )
        return sorted(existing + created, key=lambda link: link.challenge_id)

    return await _links_for(db, bet_id, challenge_ids)


async def _links_for(db: AsyncSession, bet_id: int, challenge_ids: list[int]) -> list[ChallengeBet]:
    result = await db.execute(
        select(ChallengeBet)
        .where(ChallengeBet.bet_id == bet_id, ChallengeBet.challenge_id.in_(challenge_ids))
        .order_by(ChallengeBet.challenge_id)
    )
    return list(result.scalars().all())
