"""Redis client used for notification publishing."""

import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


async def init_redis(url: str) -> redis.Redis:
    """Create the shared client and check that the server answers.

    An unreachable server is logged, not raised: the worker keeps running and
    the publisher counts each failed publish.
    """
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    try:
        await _client.ping()
        logger.info("Connected to Redis for progression events")
    except redis.RedisError:
        logger.warning("Redis at startup is unreachable; events will be dropped until it recovers", exc_info=True)
    return _client


async def close_redis() -> None:
    """Close the shared client, if one was created."""
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None
