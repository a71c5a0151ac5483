"""Clock sources for the engine.

Every rule that depends on "now" takes its time from a clock object so tests
can move virtual time instead of racing real timers. All clocks return
timezone-aware datetimes in the user's local zone.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Anything that can tell the engine the current local time."""

    @property
    def tz(self) -> tzinfo: ...

    def now(self) -> datetime: ...


def resolve_timezone(name: str = "") -> tzinfo:
    """Return the named IANA zone, or the host's local zone when name is empty."""
    if name:
        return ZoneInfo(name)
    return datetime.now().astimezone().tzinfo or timezone.utc


class SystemClock:
    """Wall-clock time in a fixed user timezone."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz or resolve_timezone()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class ManualClock:
    """Clock that only moves when told to. Used for replays and tests."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            msg = "ManualClock requires a timezone-aware start time"
            raise ValueError(msg)
        self._now = start
        self._tz = start.tzinfo

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        """Move forward by a timedelta spec, e.g. ``advance(minutes=5)``."""
        self._now = shift(self._now, timedelta(**delta))
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment.astimezone(self._tz)


def shift(moment: datetime, delta: timedelta) -> datetime:
    """``moment + delta`` in absolute time, kept in ``moment``'s zone.

    Plain addition on a zoneinfo datetime moves the wall clock, which is off
    by an hour across a DST change.
    """
    if moment.tzinfo is None:
        return moment + delta
    return (moment.astimezone(timezone.utc) + delta).astimezone(moment.tzinfo)


def elapsed(start: datetime, end: datetime) -> timedelta:
    """Absolute time from ``start`` to ``end``, DST-safe for aware datetimes."""
    if start.tzinfo is None or end.tzinfo is None:
        return end - start
    return end.astimezone(timezone.utc) - start.astimezone(timezone.utc)
