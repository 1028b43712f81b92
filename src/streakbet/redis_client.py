"""Redis client for the audit event bus.

Settlement publishes at most a handful of events per wager, so the pool stays
small; the health check keeps idle connections from going stale between
sweeps.
"""

import redis.asyncio as redis

AUDIT_CLIENT_NAME = "streakbet-audit"

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 10) -> None:
    """Connect the audit client and verify the server answers."""
    global _client  # noqa: PLW0603
    client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
        client_name=AUDIT_CLIENT_NAME,
        health_check_interval=30,
    )
    await client.ping()
    _client = client


async def close_redis() -> None:
    """Close the audit client, if one was opened."""
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """Get the audit client."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client
