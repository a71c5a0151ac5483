"""Background worker that drives the engine's timers.

Owns four pollers against one store:
  countdown      TICK_COUNTDOWN, then PERFORM_DAILY_RESET when it reads 0
  session        TICK_SESSION, and STOP_SESSION once the user has gone idle
  powerup_expiry one EXPIRE_POWERUP per due activation, plus EXPIRE_BONUS_XP
  rollover       CHECK_DAILY_RESET

All of them go through ``store.dispatch`` so they are serialized with UI
commands. Events the store emits are queued and forwarded to the
notification publisher, if one is configured.

Usage: python -m progression.worker
"""

from __future__ import annotations

import asyncio
import signal
from types import TracebackType

import structlog

from progression.catalog import InMemoryCatalog
from progression.clock import SystemClock, resolve_timezone
from progression.commands import (
    CheckDailyReset,
    ExpireBonusXP,
    ExpirePowerUp,
    PerformDailyReset,
    StopSession,
    TickCountdown,
    TickSession,
)
from progression.config import Settings, get_settings
from progression.events import EngineEvent
from progression.logging import setup_logging
from progression.notifications import NotificationPublisher
from progression.pollers import IntervalPoller
from progression.redis_client import close_redis, init_redis
from progression.store import EngineStore

logger = structlog.get_logger()


class ProgressionWorker:
    """Runs the engine's pollers for one store until stopped."""

    def __init__(
        self,
        store: EngineStore,
        settings: Settings | None = None,
        publisher: NotificationPublisher | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._publisher = publisher
        self._queue: asyncio.Queue[EngineEvent] = asyncio.Queue()
        self._publish_task: asyncio.Task[None] | None = None
        self._unsubscribe = None
        self._running = False

        self.pollers = [
            IntervalPoller("countdown", self._settings.countdown_interval_seconds, self.tick_countdown),
            IntervalPoller("session", self._settings.session_tick_interval_seconds, self.tick_session),
            IntervalPoller("powerup_expiry", self._settings.powerup_expiry_interval_seconds, self.expire_power_ups),
            IntervalPoller("rollover", self._settings.rollover_interval_seconds, self.check_rollover),
        ]

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_tasks(self) -> list[asyncio.Task[None]]:
        tasks = [poller.task for poller in self.pollers if poller.running]
        if self._publish_task is not None and not self._publish_task.done():
            tasks.append(self._publish_task)
        return [task for task in tasks if task is not None]

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        if self._publisher is not None:
            self._unsubscribe = self._store.subscribe(self._queue.put_nowait)
            self._publish_task = asyncio.create_task(self._forward_events(), name="progression:publish")

        # First rollover check only records the marker
        self._store.dispatch(CheckDailyReset())

        for poller in self.pollers:
            poller.start()

        logger.info(
            "progression_worker_started",
            user_id=self._store.user_id,
            pollers={poller.name: poller.interval for poller in self.pollers},
        )

    async def stop(self) -> None:
        """Close any open session, cancel every poller and close the store."""
        if not self._running:
            return
        self._running = False

        self._store.dispatch(StopSession())

        for poller in self.pollers:
            await poller.stop()

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._publish_task is not None:
            self._publish_task.cancel()
            try:
                await self._publish_task
            except asyncio.CancelledError:
                pass
            self._publish_task = None
            await self._flush_events()

        self._store.close()
        logger.info("progression_worker_stopped", user_id=self._store.user_id)

    async def __aenter__(self) -> ProgressionWorker:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # --- poller callbacks ---

    def tick_countdown(self) -> None:
        self._store.dispatch(TickCountdown())
        if self._store.reset_countdown() == 0:
            self._store.dispatch(PerformDailyReset())

    def tick_session(self) -> None:
        if not self._store.session_active():
            return
        self._store.dispatch(TickSession())
        if self._store.session_idle():
            logger.info("session_idle_timeout", user_id=self._store.user_id)
            self._store.dispatch(StopSession())

    def expire_power_ups(self) -> None:
        for power_up_id, instance_id in self._store.due_power_ups():
            self._store.dispatch(ExpirePowerUp(id=power_up_id, instance_id=instance_id))
        self._store.dispatch(ExpireBonusXP())

    def check_rollover(self) -> None:
        self._store.dispatch(CheckDailyReset())

    # --- event forwarding ---

    async def _forward_events(self) -> None:
        if self._publisher is None:
            return
        try:
            while True:
                event = await self._queue.get()
                await self._publisher.publish(event, user_id=self._store.user_id)
        except asyncio.CancelledError:
            pass

    async def _flush_events(self) -> None:
        if self._publisher is None:
            return
        while not self._queue.empty():
            await self._publisher.publish(self._queue.get_nowait(), user_id=self._store.user_id)


async def main() -> None:
    """Run a worker for a single user until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings)

    clock = SystemClock(resolve_timezone(settings.timezone))
    catalog = InMemoryCatalog.from_json(settings.catalog_path) if settings.catalog_path else InMemoryCatalog()
    store = EngineStore(clock, catalog, settings, user_id=settings.user_id)

    publisher = None
    if settings.redis_url:
        client = await init_redis(settings.redis_url)
        publisher = NotificationPublisher(client, settings.notification_channel_prefix)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    worker = ProgressionWorker(store, settings, publisher)
    try:
        async with worker:
            await stop_event.wait()
    finally:
        if publisher is not None:
            await publisher.close()
        await close_redis()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
