"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from progression.catalog import InMemoryCatalog, PowerUpSpec
from progression.clock import ManualClock
from progression.config import Settings
from progression.store import EngineStore

# UTC-5, no DST, so day boundaries are predictable without tzdata
LOCAL_TZ = timezone(timedelta(hours=-5))


@pytest.fixture
def clock() -> ManualClock:
    """Manual clock at Tue 2026-03-10 10:00 local time."""
    return ManualClock(datetime(2026, 3, 10, 10, 0, 0, tzinfo=LOCAL_TZ))


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog([
        PowerUpSpec(id="pu-1", default_duration=30, multiplier=2.0, type="xp_boost", rarity="common"),
        PowerUpSpec(id="pu-2", default_duration=60, multiplier=1.5, type="xp_boost", rarity="rare"),
        PowerUpSpec(id="pu-6", default_duration=1440, type="streak_shield", rarity="epic"),
    ])


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, redis_url="", log_format="console")


@pytest.fixture
def store(clock: ManualClock, catalog: InMemoryCatalog, settings: Settings) -> EngineStore:
    return EngineStore(clock, catalog, settings, user_id=42)


@pytest.fixture
def events(store: EngineStore) -> list:
    """Events emitted by ``store`` during the test."""
    captured: list = []
    store.subscribe(captured.append)
    return captured
