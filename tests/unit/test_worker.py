"""Worker tests: pollers drive the store and are fully torn down on stop."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from progression.commands import ActivatePowerUp, AddXP, BuyPowerUp, StartSession, TouchActivity
from progression.config import Settings
from progression.notifications import NotificationPublisher
from progression.store import EngineStore
from progression.worker import ProgressionWorker

LOCAL_TZ = timezone(timedelta(hours=-5))


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        _env_file=None,
        countdown_interval_seconds=0.01,
        session_tick_interval_seconds=0.01,
        powerup_expiry_interval_seconds=0.01,
        rollover_interval_seconds=0.01,
    )


@pytest.fixture
def fast_store(clock, catalog, fast_settings) -> EngineStore:
    return EngineStore(clock, catalog, fast_settings, user_id=42)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_creates_pollers(self, fast_store, fast_settings) -> None:
        worker = ProgressionWorker(fast_store, fast_settings)
        await worker.start()
        try:
            assert worker.running is True
            assert len(worker.active_tasks) == 4
            assert {poller.name for poller in worker.pollers} == {
                "countdown", "session", "powerup_expiry", "rollover",
            }
        finally:
            await worker.stop()

    @pytest.mark.asyncio
    async def test_stop_leaves_no_tasks(self, fast_store, fast_settings) -> None:
        worker = ProgressionWorker(fast_store, fast_settings)
        await worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()

        assert worker.active_tasks == []
        assert all(poller.task is None for poller in worker.pollers)
        assert fast_store.closed is True

    @pytest.mark.asyncio
    async def test_stop_closes_open_session(self, fast_store, fast_settings, clock) -> None:
        worker = ProgressionWorker(fast_store, fast_settings)
        await worker.start()
        fast_store.dispatch(StartSession(kind="study"))
        clock.advance(minutes=6)
        await worker.stop()

        snapshot = fast_store.snapshot()
        assert snapshot["activity"]["is_active"] is False
        assert snapshot["xp"]["current_xp"] == 5

    @pytest.mark.asyncio
    async def test_no_mutation_after_stop(self, fast_store, fast_settings, clock) -> None:
        worker = ProgressionWorker(fast_store, fast_settings)
        await worker.start()
        await worker.stop()
        before = fast_store.snapshot()

        clock.set(datetime(2026, 3, 12, 1, 0, tzinfo=LOCAL_TZ))
        await asyncio.sleep(0.05)
        worker.tick_countdown()
        worker.check_rollover()
        assert fast_store.snapshot() == before

    @pytest.mark.asyncio
    async def test_context_manager(self, fast_store, fast_settings) -> None:
        async with ProgressionWorker(fast_store, fast_settings) as worker:
            assert worker.running is True
        assert worker.active_tasks == []
        assert worker.running is False

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, fast_store, fast_settings) -> None:
        worker = ProgressionWorker(fast_store, fast_settings)
        await worker.start()
        await worker.stop()
        await worker.stop()
        assert worker.active_tasks == []


class TestPolling:
    """Each poller issues its command through the store."""

    @pytest.mark.asyncio
    async def test_expired_power_ups_removed(self, fast_store, fast_settings, clock) -> None:
        fast_store.dispatch(BuyPowerUp(id="pu-1", cost=50))
        fast_store.dispatch(ActivatePowerUp(id="pu-1", duration_minutes=1))

        async with ProgressionWorker(fast_store, fast_settings):
            await asyncio.sleep(0.05)
            assert len(fast_store.snapshot()["power_ups"]["active_power_ups"]) == 1
            clock.advance(minutes=2)
            await asyncio.sleep(0.05)
            assert fast_store.snapshot()["power_ups"]["active_power_ups"] == []

    @pytest.mark.asyncio
    async def test_idle_session_stopped(self, fast_store, fast_settings, clock) -> None:
        fast_store.dispatch(TouchActivity())
        async with ProgressionWorker(fast_store, fast_settings):
            clock.advance(minutes=16)
            await asyncio.sleep(0.05)
            assert fast_store.session_active() is False
            assert fast_store.streak_snapshot()["daily_activity"]["2026-03-10"]["active_minutes"] == 16

    @pytest.mark.asyncio
    async def test_midnight_reset_fires_once(self, fast_store, fast_settings, clock) -> None:
        events: list = []
        fast_store.subscribe(events.append)

        async with ProgressionWorker(fast_store, fast_settings):
            await asyncio.sleep(0.03)
            clock.set(datetime(2026, 3, 11, 0, 0, 1, tzinfo=LOCAL_TZ))
            await asyncio.sleep(0.1)
            snapshot = fast_store.snapshot()

        assert snapshot["daily_reset"]["last_reset_date"] == "2026-03-11"
        assert [event.kind.value for event in events].count("daily_reset") == 1
        assert snapshot["daily_reset"]["reset_countdown"] > 0

    def test_callbacks_usable_without_loop(self, store) -> None:
        worker = ProgressionWorker(store, Settings(_env_file=None))
        worker.tick_countdown()
        worker.tick_session()
        worker.expire_power_ups()
        worker.check_rollover()
        assert store.snapshot()["daily_reset"]["last_checked_at"] is not None


class TestEventForwarding:
    @pytest.mark.asyncio
    async def test_no_publisher_means_no_forwarding(self, fast_store, fast_settings) -> None:
        worker = ProgressionWorker(fast_store, fast_settings)
        await worker._forward_events()
        await worker.start()
        assert len(worker.active_tasks) == 4
        await worker.stop()

    @pytest.mark.asyncio
    async def test_events_published(self, fast_store, fast_settings) -> None:
        client = AsyncMock()
        publisher = NotificationPublisher(client, "pubsub:progression")

        async with ProgressionWorker(fast_store, fast_settings, publisher):
            fast_store.dispatch(AddXP(amount=1100, source="task"))
            await asyncio.sleep(0.05)

        channels = [call.args[0] for call in client.publish.await_args_list]
        assert "pubsub:progression:level_up" in channels
        assert "ws:user:42" in channels
        assert publisher.stats["events_published"] == 1

    @pytest.mark.asyncio
    async def test_events_flushed_on_stop(self, fast_store, fast_settings, clock) -> None:
        client = AsyncMock()
        publisher = NotificationPublisher(client)
        worker = ProgressionWorker(fast_store, fast_settings, publisher)
        await worker.start()

        fast_store.dispatch(StartSession())
        clock.advance(minutes=10)
        await worker.stop()

        channels = [call.args[0] for call in client.publish.await_args_list]
        assert "pubsub:progression:session_bonus" in channels
