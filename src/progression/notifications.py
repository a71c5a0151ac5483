"""Redis pub/sub publisher for engine events.

Each event goes to ``{prefix}:{kind}`` (e.g. pubsub:progression:level_up) for
activity feeds, and, when a user id is given, to ``ws:user:{user_id}`` so the
WebSocket bridge can deliver it to that user's open connections.
"""

from __future__ import annotations

import json
import logging

import redis.asyncio as redis

from progression.events import EngineEvent

logger = logging.getLogger(__name__)


class NotificationPublisher:
    """Publishes engine events over Redis pub/sub. Failures are counted, never raised."""

    def __init__(self, client: redis.Redis | None, prefix: str = "pubsub:progression") -> None:
        self._client = client
        self._prefix = prefix
        self._events_published = 0
        self._events_failed = 0

    def channel_for(self, event: EngineEvent) -> str:
        return f"{self._prefix}:{event.kind.value}"

    async def publish(self, event: EngineEvent, user_id: int | str | None = None) -> None:
        if self._client is None:
            logger.debug("Redis not configured, dropping %s event", event.kind.value)
            self._events_failed += 1
            return

        payload = event.to_payload()
        channel = self.channel_for(event)
        try:
            await self._client.publish(channel, json.dumps(payload))
            if user_id is not None:
                await self._client.publish(f"ws:user:{user_id}", json.dumps(payload))
            self._events_published += 1
        except redis.RedisError:
            self._events_failed += 1
            logger.warning("Failed to publish %s to %s", event.kind.value, channel, exc_info=True)

    async def close(self) -> None:
        logger.info(
            "Notification publisher closed. Published: %d, Failed: %d",
            self._events_published,
            self._events_failed,
        )
        self._client = None

    @property
    def stats(self) -> dict[str, int]:
        """Return publisher statistics."""
        return {
            "events_published": self._events_published,
            "events_failed": self._events_failed,
        }
