"""Challenge arq worker — periodic expiry sweep and settlement batch.

Import path for arq CLI: arq streakbet.workers.challenge_worker.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from streakbet.challenges.batch import settle_graded_bets
from streakbet.challenges.lifecycle import ChallengeLifecycle
from streakbet.config import get_settings
from streakbet.database import close_db, get_session_factory, init_db
from streakbet.logging_setup import setup_logging
from streakbet.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


async def challenge_worker_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB + Redis connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    await init_redis(settings.redis_url, settings.redis_max_connections)
    ctx["redis"] = get_redis()
    logger.info("Challenge worker started")


async def challenge_worker_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_redis()
    await close_db()
    logger.info("Challenge worker shut down")


async def expire_challenges(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: expire active challenges past their expiry."""
    async with get_session_factory()() as db:
        try:
            count = await ChallengeLifecycle(db, ctx.get("redis")).expire_sweep()
        except Exception:
            logger.exception("Failed to expire challenges")
            raise
    if count:
        logger.info("Expired %d challenges", count)
    return count


async def settle_pending(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: settle graded wagers against their linked challenges.

    Returns the number of wagers that failed and will be retried next run.
    """
    report = await settle_graded_bets(get_session_factory(), ctx.get("redis"))
    if report.settled or report.failed:
        logger.info(
            "Settlement batch: %d wagers settled, %d failed, %d levels completed",
            report.settled,
            report.failed,
            sum(1 for o in report.outcomes if o.level_completed),
        )
    return report.failed


class WorkerSettings:
    """arq worker settings for the challenge engine."""

    functions = [expire_challenges, settle_pending]
    cron_jobs = [
        cron(expire_challenges, minute={0, 15, 30, 45}),
        cron(settle_pending, minute=set(range(0, 60, 5))),
    ]
    on_startup = challenge_worker_startup
    on_shutdown = challenge_worker_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 300
    allow_abort_jobs = True
