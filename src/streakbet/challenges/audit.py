"""Fire-and-forget challenge event publishing over Redis pub/sub."""

from __future__ import annotations

import json
from typing import Any

import structlog

from streakbet.config import get_settings

logger = structlog.get_logger()


async def publish_challenge_event(redis: object | None, event: str, **payload: Any) -> bool:
    """Publish ``payload`` on ``<prefix>:<event>``.

    Returns True if published. Publish failures are logged, never raised, so
    they can't fail a committed challenge transaction.
    """
    if redis is None:
        return False

    channel = f"{get_settings().audit_channel_prefix}:{event}"
    try:
        await redis.publish(channel, json.dumps({"event": event, **payload}, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("audit_publish_failed", channel=channel, exc_info=True)
        return False
    return True
