"""XP ledger: leveling curve and validated XP arithmetic.

Curve:
  threshold_for(level) = floor(1000 * 1.1^(level-1)), levels clamped to 1..100.
  Reaching level L costs the sum of threshold_for(2..L).

Every function here is pure and never raises on bad numbers. Non-numeric,
NaN and out-of-range inputs are clamped or defaulted instead.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from progression.clock import shift
from progression.schemas import LevelProgress, XPState

logger = logging.getLogger(__name__)

BASE_XP = 1000
GROWTH_RATE = 1.1
MIN_LEVEL = 1
MAX_LEVEL = 100

# Conversion rate for CONVERT_XP_TO_GOLD
XP_PER_GOLD = 10


def _as_number(value: object) -> float | None:
    """Return value as a finite float, or None if it is not one.

    Integers too large for a float saturate at +/-MAX_XP.
    """
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    except OverflowError:
        # integers beyond float range
        return float(MAX_XP) if value > 0 else -float(MAX_XP)  # type: ignore[operator]
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _clamp_level(level: object) -> int:
    number = _as_number(level)
    if number is None:
        return MIN_LEVEL
    return max(MIN_LEVEL, min(MAX_LEVEL, int(number)))


def threshold_for(level: int) -> int:
    """XP step required to enter ``level`` from the level below it."""
    clamped = _clamp_level(level)
    return math.floor(BASE_XP * GROWTH_RATE ** (clamped - 1))


def _build_cumulative() -> tuple[int, ...]:
    totals = [0, 0]  # index 0 unused, level 1 needs nothing
    for level in range(MIN_LEVEL + 1, MAX_LEVEL + 1):
        totals.append(totals[-1] + threshold_for(level))
    return tuple(totals)


_CUMULATIVE = _build_cumulative()

MAX_XP = _CUMULATIVE[MAX_LEVEL]


def total_xp_for_level(level: int) -> int:
    """Cumulative XP at which ``level`` is reached."""
    return _CUMULATIVE[_clamp_level(level)]


def clamp_xp(value: object) -> int:
    """Coerce any value into a valid XP balance in [0, MAX_XP]."""
    if isinstance(value, float) and math.isinf(value):
        return MAX_XP if value > 0 else 0
    number = _as_number(value)
    if number is None:
        return 0
    return max(0, min(MAX_XP, math.floor(number)))


def level_from_xp(total_xp: object) -> int:
    """Level reached with ``total_xp``, capped at MAX_LEVEL."""
    xp = clamp_xp(total_xp)
    level = MIN_LEVEL
    cumulative = 0
    while level < MAX_LEVEL:
        needed = threshold_for(level + 1)
        if cumulative + needed > xp:
            break
        cumulative += needed
        level += 1
    return level


def progress(current_xp: object, current_level: object) -> LevelProgress:
    """Progress toward the next level for a progress bar.

    The percentage is always within [0, 100]. At the level cap the step to
    the next level is zero and progress reads as complete.
    """
    level = _clamp_level(current_level)
    xp = clamp_xp(current_xp)
    current_threshold = threshold_for(level)
    next_threshold = threshold_for(level + 1)

    level_xp = max(0, xp - current_threshold)
    needed_xp = next_threshold - current_threshold

    if needed_xp <= 0:
        progress_pct = 100.0
    else:
        progress_pct = min(max(level_xp / needed_xp * 100, 0.0), 100.0)

    return LevelProgress(
        level_xp=level_xp,
        needed_xp=needed_xp,
        progress_pct=progress_pct,
        xp_to_next=max(0, next_threshold - xp),
    )


def _coerce_multiplier(value: object) -> float:
    number = _as_number(value)
    if number is None or number <= 0:
        return 1.0
    return number


def initialize_xp(xp: object = 0) -> XPState:
    """Fresh XP state for a stored balance."""
    balance = clamp_xp(xp)
    level = level_from_xp(balance)
    return XPState(
        current_xp=balance,
        current_level=level,
        xp_to_next_level=threshold_for(level + 1),
        total_xp_earned=balance,
    )


def add_xp(state: XPState, amount: object, source: str, multiplier: object = 1.0) -> XPState:
    """Apply an XP award (amount >= 0) or a spend/penalty (amount < 0).

    Awards are scaled by ``multiplier`` and the state's own multiplier and
    count toward ``total_xp_earned``. Spends are applied as-is and clamp at
    zero instead of overdrawing. Returns a new state; ``state`` is untouched.
    """
    value = _as_number(amount)
    if value is None:
        logger.debug("Ignoring non-numeric XP amount %r from %s", amount, source)
        value = 0.0

    if value < 0:
        final = int(value)
        earned = state.total_xp_earned
        if state.current_xp + final < 0:
            logger.warning(
                "XP overdraft from %s: balance %d, delta %d; clamping to 0",
                source, state.current_xp, final,
            )
    else:
        scale = _coerce_multiplier(multiplier) * _coerce_multiplier(state.xp_multiplier)
        scaled = value * scale
        final = MAX_XP if scaled >= MAX_XP else math.floor(scaled)
        earned = state.total_xp_earned + final

    new_xp = clamp_xp(state.current_xp + final)
    new_level = level_from_xp(new_xp)

    return state.model_copy(update={
        "current_xp": new_xp,
        "current_level": new_level,
        "xp_to_next_level": threshold_for(new_level + 1),
        "total_xp_earned": earned,
    })


def activate_bonus_xp(
    state: XPState,
    multiplier: object,
    duration_hours: object,
    now: datetime,
) -> XPState:
    """Switch on a global XP multiplier until ``now + duration_hours``."""
    factor = max(1.0, _coerce_multiplier(multiplier))
    hours = max(0.0, _as_number(duration_hours) or 0.0)
    return state.model_copy(update={
        "xp_multiplier": factor,
        "bonus_xp_active": True,
        "bonus_xp_expiry": shift(now, timedelta(hours=hours)),
    })


def expire_bonus_xp(state: XPState, now: datetime) -> XPState:
    """Drop the global multiplier once its expiry has passed. Idempotent."""
    if not state.bonus_xp_active or state.bonus_xp_expiry is None:
        return state
    if now < state.bonus_xp_expiry:
        return state
    return state.model_copy(update={
        "xp_multiplier": 1.0,
        "bonus_xp_active": False,
        "bonus_xp_expiry": None,
    })


def xp_cost_for_gold(gold: int) -> int:
    return max(0, int(gold)) * XP_PER_GOLD
