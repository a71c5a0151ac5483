"""Fixed-interval asyncio pollers.

Every timer the engine owns is one of these, so a worker can cancel all of
them on teardown and nothing keeps firing against a closed store.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()

PollCallback = Callable[[], Awaitable[None] | None]


class IntervalPoller:
    """Calls ``callback`` every ``interval`` seconds until stopped.

    A failing callback is logged and the loop carries on with the next tick.
    """

    def __init__(self, name: str, interval: float, callback: PollCallback) -> None:
        if interval <= 0:
            msg = f"Poller {name} needs a positive interval, got {interval}"
            raise ValueError(msg)
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.ticks = 0

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"poller:{self.name}")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        logger.debug("poller_started", poller=self.name, interval=self.interval)
        try:
            while self._running:
                await asyncio.sleep(self.interval)
                try:
                    result = self._callback()
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception("poller_callback_failed", poller=self.name)
                self.ticks += 1
        except asyncio.CancelledError:
            pass
        finally:
            logger.debug("poller_stopped", poller=self.name, ticks=self.ticks)
