"""Audit Redis client — connection options and lifecycle."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from streakbet import redis_client


@pytest.fixture
def fake_from_url(monkeypatch):
    client = AsyncMock()
    factory = MagicMock(return_value=client)
    monkeypatch.setattr(redis_client.redis, "from_url", factory)
    yield factory
    redis_client._client = None


class TestRedisClient:
    @pytest.mark.asyncio
    async def test_init_names_client_and_checks_health(self, fake_from_url):
        await redis_client.init_redis("redis://cache:6379/2", max_connections=4)

        url, = fake_from_url.call_args.args
        kwargs = fake_from_url.call_args.kwargs
        assert url == "redis://cache:6379/2"
        assert kwargs["client_name"] == "streakbet-audit"
        assert kwargs["max_connections"] == 4
        assert kwargs["health_check_interval"] == 30
        assert kwargs["decode_responses"] is True
        fake_from_url.return_value.ping.assert_awaited_once()
        assert redis_client.get_redis() is fake_from_url.return_value

    @pytest.mark.asyncio
    async def test_unreachable_server_leaves_client_unset(self, fake_from_url):
        fake_from_url.return_value.ping.side_effect = ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await redis_client.init_redis("redis://nowhere:6379/0")
        with pytest.raises(RuntimeError):
            redis_client.get_redis()

    @pytest.mark.asyncio
    async def test_close_releases_client(self, fake_from_url):
        await redis_client.init_redis("redis://cache:6379/0")
        client = fake_from_url.return_value

        await redis_client.close_redis()

        client.aclose.assert_awaited_once()
        with pytest.raises(RuntimeError):
            redis_client.get_redis()
        await redis_client.close_redis()  # second close is a no-op
