"""Settlement batch: push graded wagers through the settlement engine.

The grading collaborator writes ``bets.result``. Any wager that is graded but
still has unsettled challenge links is settled here, so a wager whose
settlement failed part-way is picked up again on the next run.
"""

from __future__ import annotations

import asyncio

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streakbet.challenges.catalog import Catalog
from streakbet.challenges.errors import SettlementIncomplete
from streakbet.challenges.schemas import BatchReport, SettlementOutcome
from streakbet.challenges.settlement import SETTLEMENT_RESULTS, SettlementEngine
from streakbet.config import get_settings
from streakbet.db.models import CHALLENGE_ACTIVE, Bet, Challenge, ChallengeBet

logger = structlog.get_logger()


async def find_graded_bets(db: AsyncSession, limit: int) -> list[tuple[int, str]]:
    """(bet_id, result) for graded wagers with an unsettled link on an active challenge.

    Links whose challenge left the active state, or that were made before the
    challenge was last reset, stay unsettled for good and are not picked up
    again.
    """
    result = await db.execute(
        select(Bet.id, Bet.result)
        .join(ChallengeBet, ChallengeBet.bet_id == Bet.id)
        .join(Challenge, Challenge.id == ChallengeBet.challenge_id)
        .where(
            ChallengeBet.result.is_(None),
            Challenge.status == CHALLENGE_ACTIVE,
            or_(Challenge.reset_at.is_(None), ChallengeBet.created_at >= Challenge.reset_at),
            Bet.result.in_(sorted(SETTLEMENT_RESULTS)),
        )
        .distinct()
        .order_by(Bet.id)
        .limit(limit)
    )
    return [(row[0], row[1]) for row in result.all()]


async def settle_graded_bets(
    session_factory: async_sessionmaker[AsyncSession],
    redis: object | None = None,
    *,
    catalog: Catalog | None = None,
    concurrency: int | None = None,
    limit: int | None = None,
) -> BatchReport:
    """Settle every graded wager that still has open challenge links.

    Wagers run in parallel (bounded by ``concurrency``); each wager is settled
    serially end-to-end in its own session.
    """
    settings = get_settings()
    concurrency = concurrency or settings.settlement_concurrency
    limit = limit or settings.settlement_batch_size

    async with session_factory() as db:
        graded = await find_graded_bets(db, limit)

    report = BatchReport()
    if not graded:
        return report

    semaphore = asyncio.Semaphore(concurrency)

    async def _run(bet_id: int, result: str) -> list[SettlementOutcome] | None:
        async with semaphore, session_factory() as db:
            engine = SettlementEngine(db, redis, catalog)
            try:
                return await engine.settle(bet_id, result)
            except SettlementIncomplete as exc:
                logger.error(
                    "bet_settlement_incomplete",
                    bet_id=bet_id,
                    failed_challenges=exc.failed_challenge_ids,
                )
                report.outcomes.extend(exc.outcomes)
                return None
            except Exception:
                await db.rollback()
                logger.exception("bet_settlement_failed", bet_id=bet_id)
                return None

    results = await asyncio.gather(*(_run(bet_id, result) for bet_id, result in graded))
    for outcomes in results:
        if outcomes is None:
            report.failed += 1
        else:
            report.settled += 1
            report.outcomes.extend(outcomes)

    logger.info("settlement_batch_complete", settled=report.settled, failed=report.failed)
    return report
