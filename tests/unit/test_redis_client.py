"""Tests for the shared Redis client setup."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from progression import redis_client


@pytest.fixture
def fake_client(monkeypatch) -> AsyncMock:
    client = AsyncMock()
    monkeypatch.setattr(redis_client.redis, "from_url", lambda url, **kwargs: client)
    return client


class TestInitRedis:
    @pytest.mark.asyncio
    async def test_pings_and_returns_client(self, fake_client) -> None:
        client = await redis_client.init_redis("redis://localhost:6379/0")
        assert client is fake_client
        fake_client.ping.assert_awaited_once()
        await redis_client.close_redis()

    @pytest.mark.asyncio
    async def test_unreachable_server_does_not_raise(self, fake_client) -> None:
        fake_client.ping.side_effect = redis.ConnectionError("refused")
        client = await redis_client.init_redis("redis://localhost:6379/0")
        assert client is fake_client
        await redis_client.close_redis()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_client) -> None:
        await redis_client.init_redis("redis://localhost:6379/0")
        await redis_client.close_redis()
        await redis_client.close_redis()
        fake_client.aclose.assert_awaited_once()
