"""Daily streak tracking: day-boundary detection, inactivity penalties, day buckets.

All dates are user-local calendar dates formatted as YYYY-MM-DD. Day
differences are computed on date values only, never on timestamps, so a
late-evening and an early-morning activity one calendar day apart always
count as consecutive.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime, timedelta, tzinfo

from progression.clock import Clock
from progression.schemas import (
    DayActivity,
    InactivityPenalty,
    StreakAdvance,
    StreakMilestone,
    StreakState,
)

logger = logging.getLogger(__name__)


def local_date(ts: datetime, tz: tzinfo | None = None) -> str:
    """Calendar date of ``ts`` in the user's zone.

    Naive timestamps are taken as already local.
    """
    if ts.tzinfo is not None and tz is not None:
        ts = ts.astimezone(tz)
    return ts.date().isoformat()


def today(clock: Clock) -> str:
    """Today's date in the clock's local zone."""
    return local_date(clock.now(), clock.tz)


def parse_date(value: str | date | None) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def days_between(earlier: str, later: str) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (negative if reversed)."""
    start = parse_date(earlier)
    end = parse_date(later)
    if start is None or end is None:
        msg = f"Invalid date pair: {earlier!r}, {later!r}"
        raise ValueError(msg)
    return (end - start).days


def advance(current_streak: int, last_activity_date: str, today: str) -> StreakAdvance:
    """Decide how an activity on ``today`` affects the streak."""
    current = max(0, int(current_streak or 0))

    if not last_activity_date or parse_date(last_activity_date) is None:
        if last_activity_date:
            logger.warning("Unparseable last activity date %r; starting a new streak", last_activity_date)
        return StreakAdvance(new_streak=1, broken=False, continued=False, days_inactive=0)

    if parse_date(today) is None:
        logger.warning("Unparseable activity date %r; leaving streak unchanged", today)
        return StreakAdvance(new_streak=current, broken=False, continued=True, days_inactive=0, anomalous=True)

    days_diff = days_between(last_activity_date, today)

    if days_diff < 0:
        logger.warning(
            "Last activity %s is after today %s (clock skew); leaving streak unchanged",
            last_activity_date, today,
        )
        return StreakAdvance(new_streak=current, broken=False, continued=True, days_inactive=0, anomalous=True)

    if days_diff == 0:
        return StreakAdvance(new_streak=current, broken=False, continued=True, days_inactive=0)

    if days_diff == 1:
        return StreakAdvance(new_streak=current + 1, broken=False, continued=True, days_inactive=0)

    return StreakAdvance(new_streak=1, broken=True, continued=False, days_inactive=days_diff)


# (min days inactive, share of XP lost, resets streak, description), highest first
PENALTY_TIERS: tuple[tuple[int, float, bool, str], ...] = (
    (14, 0.50, True, "Major inactivity: 50% XP loss and streak reset"),
    (7, 0.25, False, "Extended inactivity: 25% XP loss"),
    (3, 0.10, False, "Moderate inactivity: 10% XP loss"),
    (1, 0.05, False, "Minor inactivity: 5% XP loss"),
)


def inactivity_penalty(days_inactive: int, current_xp: int) -> InactivityPenalty:
    """Tiered XP penalty for a period of inactivity."""
    days = max(0, int(days_inactive or 0))
    xp = max(0, int(current_xp or 0))

    for min_days, rate, resets, description in PENALTY_TIERS:
        if days >= min_days:
            xp_penalty = int(xp * rate)
            return InactivityPenalty(
                should_punish=xp_penalty > 0,
                xp_penalty=xp_penalty,
                streak_reset=resets,
                description=description,
            )

    return InactivityPenalty(should_punish=False, xp_penalty=0, streak_reset=False)


def evaluate_inactivity(
    state: StreakState,
    current_xp: int,
    today: str,
    shielded: bool = False,
) -> tuple[StreakState, InactivityPenalty]:
    """Penalty owed for the current gap, evaluated at most once per day.

    A penalty only applies once a full day has been missed, i.e. the last
    activity is two or more calendar days before ``today``. The returned
    state records the evaluation and, for the top tier, the streak reset.
    The XP deduction itself is left to the caller.
    """
    none = InactivityPenalty(should_punish=False, xp_penalty=0, streak_reset=False)

    if state.last_penalty_date == today or not state.last_activity_date:
        return state, none

    try:
        days_diff = days_between(state.last_activity_date, today)
    except ValueError:
        logger.warning("Cannot evaluate inactivity for %r", state.last_activity_date)
        return state, none

    updated = state.model_copy(update={"last_penalty_date": today})
    if days_diff <= 1:
        return updated, none

    if shielded:
        logger.info("Streak shield active; skipping %d-day inactivity penalty", days_diff)
        return updated, InactivityPenalty(
            should_punish=False, xp_penalty=0, streak_reset=False,
            description="Streak shield absorbed the inactivity penalty",
        )

    penalty = inactivity_penalty(days_diff, current_xp)
    if penalty.streak_reset:
        updated = updated.model_copy(update={"current_streak": 0})
    return updated, penalty


def apply_activity(state: StreakState, today: str) -> tuple[StreakState, StreakAdvance]:
    """Record a qualifying activity on ``today`` against the streak."""
    result = advance(state.current_streak, state.last_activity_date, today)
    if result.anomalous:
        return state, result

    update: dict[str, object] = {
        "current_streak": result.new_streak,
        "longest_streak": max(state.longest_streak, result.new_streak),
        "last_activity_date": today,
    }
    if not state.last_activity_date or result.broken or state.current_streak == 0:
        update["streak_start_date"] = today

    return state.model_copy(update=update), result


# Incoming delta keys -> DayActivity counter field. Accepts the UI's camelCase too.
ACTIVITY_COUNTERS: dict[str, str] = {
    "problems_solved": "problems_solved",
    "problemsSolved": "problems_solved",
    "tasks_completed": "tasks_completed",
    "tasksCompleted": "tasks_completed",
    "xp_earned": "xp_earned",
    "xpEarned": "xp_earned",
    "active_minutes": "active_minutes",
    "activeMinutes": "active_minutes",
}


def _non_negative_int(value: object) -> int:
    try:
        number = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, number)


def record_activity(
    state: StreakState,
    day: str,
    delta: Mapping[str, object],
    now: datetime | None = None,
) -> StreakState:
    """Add ``delta`` counters to the bucket for ``day``, creating it if needed."""
    existing = state.daily_activity.get(day, DayActivity())
    counters = existing.model_dump()

    for key, value in delta.items():
        field = ACTIVITY_COUNTERS.get(key)
        if field is None:
            continue
        counters[field] += _non_negative_int(value)

    last_time = delta.get("last_activity_time", delta.get("lastActivityTime"))
    if isinstance(last_time, str):
        try:
            last_time = datetime.fromisoformat(last_time)
        except ValueError:
            last_time = None
    if not isinstance(last_time, datetime):
        last_time = now if now is not None else existing.last_activity_time
    counters["last_activity_time"] = last_time

    buckets = dict(state.daily_activity)
    buckets[day] = DayActivity(**counters)
    return state.model_copy(update={"daily_activity": buckets})


def activity_window(state: StreakState, end: str, days: int) -> list[tuple[str, DayActivity]]:
    """Day buckets for the ``days`` ending on ``end``, oldest first, gaps zero-filled."""
    end_date = parse_date(end)
    if end_date is None or days <= 0:
        return []
    window = []
    for offset in range(days - 1, -1, -1):
        key = (end_date - timedelta(days=offset)).isoformat()
        window.append((key, state.daily_activity.get(key, DayActivity())))
    return window


STREAK_MILESTONES: dict[int, StreakMilestone] = {
    m.milestone: m
    for m in (
        StreakMilestone(milestone=1, xp_reward=50, gold_reward=10, badge="first_step"),
        StreakMilestone(milestone=3, xp_reward=150, gold_reward=25, badge="getting_started"),
        StreakMilestone(milestone=7, xp_reward=350, gold_reward=50, badge="week_warrior"),
        StreakMilestone(milestone=14, xp_reward=700, gold_reward=100, badge="fortnight_fighter"),
        StreakMilestone(milestone=21, xp_reward=1050, gold_reward=150, badge="three_week_champion"),
        StreakMilestone(milestone=30, xp_reward=1500, gold_reward=200, badge="monthly_master"),
        StreakMilestone(milestone=50, xp_reward=2500, gold_reward=350, badge="fifty_day_legend"),
        StreakMilestone(milestone=75, xp_reward=3750, gold_reward=500, badge="seasoned_veteran"),
        StreakMilestone(
            milestone=100, xp_reward=5000, gold_reward=750, badge="century_club", title="Century Master",
        ),
        StreakMilestone(milestone=150, xp_reward=7500, gold_reward=1000, badge="elite_streaker"),
        StreakMilestone(
            milestone=200, xp_reward=10000, gold_reward=1500, badge="double_century", title="Streak Legend",
        ),
        StreakMilestone(
            milestone=365, xp_reward=20000, gold_reward=5000, badge="year_warrior", title="Annual Champion",
        ),
        StreakMilestone(
            milestone=500, xp_reward=30000, gold_reward=10000, badge="five_hundred_hero",
            title="Half Millennium Master",
        ),
        StreakMilestone(
            milestone=1000, xp_reward=100000, gold_reward=50000, badge="thousand_day_titan",
            title="Millennium Legend",
        ),
    )
}


def milestone_reward(streak: int) -> StreakMilestone | None:
    """Milestone reached exactly at ``streak`` days, if any."""
    return STREAK_MILESTONES.get(streak)


def next_milestone(streak: int) -> int:
    for milestone in sorted(STREAK_MILESTONES):
        if milestone > streak:
            return milestone
    return 2000


# (min streak, bonus multiplier), highest first
STREAK_MULTIPLIERS: tuple[tuple[int, float], ...] = (
    (365, 3.0),
    (100, 2.5),
    (50, 2.0),
    (30, 1.5),
    (14, 1.3),
    (7, 1.2),
    (3, 1.1),
)


def streak_multiplier(streak: int) -> float:
    for min_streak, multiplier in STREAK_MULTIPLIERS:
        if streak >= min_streak:
            return multiplier
    return 1.0
