"""Countdown to local midnight and once-per-day reset bookkeeping.

The countdown is recomputed from the clock on every tick, never decremented,
so a throttled or suspended poller cannot drift. A reset is keyed by the
local date it belongs to; performing it twice for one date is a no-op, which
is what keeps the 1s countdown and the 60s rollover check from both firing.
"""

from __future__ import annotations

import math
from datetime import datetime, time, timedelta

from progression.clock import elapsed
from progression.schemas import DailyResetState
from progression.streak_tracker import local_date, parse_date


def next_reset_time(now: datetime) -> datetime:
    """Local midnight at the start of the day after ``now``."""
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=now.tzinfo)


def countdown(next_reset: datetime, now: datetime) -> int:
    """Whole seconds until ``next_reset``, never negative."""
    return max(0, math.floor(elapsed(now, next_reset).total_seconds()))


def reset_key(now: datetime) -> str:
    """Local date that a reset performed at ``now`` is for."""
    return local_date(now)


def _is_done_for(state: DailyResetState, day: str) -> bool:
    last = parse_date(state.last_reset_date)
    target = parse_date(day)
    return last is not None and target is not None and last >= target


def valid_reset_date(reset_date: str | None, now: datetime) -> str | None:
    """Normalized ``reset_date``, or None if it is not a date or is after today."""
    parsed = parse_date(reset_date)
    if parsed is None or parsed > parse_date(reset_key(now)):
        return None
    return parsed.isoformat()


def initialize(now: datetime, last_reset_date: str | None = None) -> DailyResetState:
    next_reset = next_reset_time(now)
    last = last_reset_date or ""
    return DailyResetState(
        last_reset_date=last,
        next_reset_time=next_reset,
        reset_countdown=countdown(next_reset, now),
        has_reset_today=last == local_date(now),
    )


def refresh(state: DailyResetState, now: datetime) -> DailyResetState:
    """Recompute the countdown for ``now``.

    Once the boundary has passed the countdown stays at 0 until the reset for
    the new day is performed. If that reset already happened (e.g. through
    the rollover check) the next midnight becomes the target.
    """
    next_reset = state.next_reset_time
    if next_reset is None or (now >= next_reset and _is_done_for(state, reset_key(now))):
        next_reset = next_reset_time(now)

    return state.model_copy(update={
        "next_reset_time": next_reset,
        "reset_countdown": countdown(next_reset, now),
        "has_reset_today": state.last_reset_date == reset_key(now),
    })


def perform_reset(
    state: DailyResetState,
    now: datetime,
    reset_date: str | None = None,
) -> tuple[DailyResetState, bool]:
    """Run the reset for ``reset_date`` (default: today) at most once.

    Returns the new state and whether the reset actually fired. A date at or
    before the last reset is stale and only refreshes the countdown, as does a
    ``reset_date`` that is not a valid date or lies after today.
    """
    day = valid_reset_date(reset_date, now) if reset_date else reset_key(now)
    if day is None or _is_done_for(state, day):
        return refresh(state, now), False

    next_reset = next_reset_time(now)
    return (
        state.model_copy(update={
            "last_reset_date": day,
            "next_reset_time": next_reset,
            "reset_countdown": countdown(next_reset, now),
            "has_reset_today": day == reset_key(now),
        }),
        True,
    )


def rolled_over(last_checked_at: datetime | None, now: datetime) -> bool:
    """True when the local date changed since the last rollover check."""
    if last_checked_at is None:
        return False
    return local_date(last_checked_at, now.tzinfo) != local_date(now)
