"""Active-time sessions and the duration bonus.

A session opens on the first user interaction (or an explicit start) and
closes on stop, idle timeout, or worker shutdown. Durations are measured in
milliseconds on absolute time so a DST change mid-session is not counted.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from progression.clock import elapsed
from progression.schemas import ActivityTimer

DEFAULT_KIND = "general"
MS_PER_MINUTE = 60_000


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, math.floor(elapsed(start, end).total_seconds() * 1000))


def start(timer: ActivityTimer, now: datetime, kind: str = DEFAULT_KIND) -> ActivityTimer:
    if timer.is_active:
        return timer
    return timer.model_copy(update={
        "session_start_time": now,
        "current_session_time": 0,
        "is_active": True,
        "last_activity_timestamp": now,
        "session_kind": kind or DEFAULT_KIND,
    })


def stop(timer: ActivityTimer, now: datetime) -> tuple[ActivityTimer, int]:
    """Close the open session. Returns the new timer and the session length in ms."""
    if not timer.is_active or timer.session_start_time is None:
        return timer, 0

    duration = _elapsed_ms(timer.session_start_time, now)
    return (
        timer.model_copy(update={
            "session_start_time": None,
            "total_active_time": timer.total_active_time + duration,
            "current_session_time": 0,
            "is_active": False,
            "session_kind": "",
        }),
        duration,
    )


def duration_bonus(duration_ms: int, step: int = 5) -> int:
    """XP for a finished session: whole minutes rounded down to ``step``.

    Sessions shorter than one step earn nothing.
    """
    step = max(1, step)
    minutes = max(0, duration_ms) // MS_PER_MINUTE
    if minutes < step:
        return 0
    return (minutes // step) * step


def touch(timer: ActivityTimer, now: datetime, kind: str = DEFAULT_KIND) -> ActivityTimer:
    """Record an interaction, opening a session if none is running."""
    timer = start(timer, now, kind)
    return timer.model_copy(update={"last_activity_timestamp": now})


def tick(timer: ActivityTimer, now: datetime) -> ActivityTimer:
    if not timer.is_active or timer.session_start_time is None:
        return timer
    return timer.model_copy(update={
        "current_session_time": _elapsed_ms(timer.session_start_time, now),
    })


def is_idle(timer: ActivityTimer, now: datetime, idle_timeout: timedelta) -> bool:
    if not timer.is_active or timer.last_activity_timestamp is None:
        return False
    return elapsed(timer.last_activity_timestamp, now) >= idle_timeout


def format_duration(ms: int) -> str:
    total_seconds = max(0, ms) // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
