"""Command definitions for the engine's single dispatch path.

Every mutation is one of these commands. Raw payloads look like:
{
    "type": "ADD_XP",
    "amount": 120,
    "source": "task_completed"
}

Numeric fields are lenient: junk is defaulted rather than rejected, so a
bad number from the UI is a no-op instead of a validation error. An unknown
``type`` or a missing required id still fails validation.
"""

from __future__ import annotations

import math
import sys
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, Field, TypeAdapter


class CommandType(str, Enum):
    """All supported command types."""

    ADD_XP = "ADD_XP"
    SPEND_XP = "SPEND_XP"
    CONVERT_XP_TO_GOLD = "CONVERT_XP_TO_GOLD"
    ACTIVATE_BONUS_XP = "ACTIVATE_BONUS_XP"
    EXPIRE_BONUS_XP = "EXPIRE_BONUS_XP"
    UPDATE_TIME_BASED_STREAK = "UPDATE_TIME_BASED_STREAK"
    RECORD_DAILY_ACTIVITY = "RECORD_DAILY_ACTIVITY"
    EVALUATE_INACTIVITY = "EVALUATE_INACTIVITY"
    BUY_POWERUP = "BUY_POWERUP"
    ACTIVATE_POWERUP = "ACTIVATE_POWERUP"
    EXPIRE_POWERUP = "EXPIRE_POWERUP"
    CHECK_DAILY_RESET = "CHECK_DAILY_RESET"
    PERFORM_DAILY_RESET = "PERFORM_DAILY_RESET"
    TICK_COUNTDOWN = "TICK_COUNTDOWN"
    START_SESSION = "START_SESSION"
    STOP_SESSION = "STOP_SESSION"
    TOUCH_ACTIVITY = "TOUCH_ACTIVITY"
    TICK_SESSION = "TICK_SESSION"


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except OverflowError:
        # integers beyond float range saturate
        return sys.float_info.max if value > 0 else -sys.float_info.max


def _number_or_zero(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return _to_float(value)
    except (TypeError, ValueError):
        return 0


def _number_or_none(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = _to_float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


LenientNumber = Annotated[float, BeforeValidator(_number_or_zero)]
OptionalNumber = Annotated[float | None, BeforeValidator(_number_or_none)]


# --- XP ---


class AddXP(BaseModel):
    type: Literal["ADD_XP"] = "ADD_XP"
    amount: LenientNumber = 0
    source: str = "unknown"
    multiplier: OptionalNumber = None  # None: use active power-up boosts
    apply_streak_bonus: bool = False


class SpendXP(BaseModel):
    type: Literal["SPEND_XP"] = "SPEND_XP"
    amount: LenientNumber = 0
    reason: str = ""


class ConvertXPToGold(BaseModel):
    """Buy ``amount`` gold at XP_PER_GOLD XP each."""

    type: Literal["CONVERT_XP_TO_GOLD"] = "CONVERT_XP_TO_GOLD"
    amount: LenientNumber = 0


class ActivateBonusXP(BaseModel):
    type: Literal["ACTIVATE_BONUS_XP"] = "ACTIVATE_BONUS_XP"
    multiplier: float = 2.0
    duration_hours: float = 1.0


class ExpireBonusXP(BaseModel):
    type: Literal["EXPIRE_BONUS_XP"] = "EXPIRE_BONUS_XP"


# --- Streak ---


class UpdateTimeBasedStreak(BaseModel):
    type: Literal["UPDATE_TIME_BASED_STREAK"] = "UPDATE_TIME_BASED_STREAK"
    activity_type: str = "general"
    timestamp: datetime | None = None


class RecordDailyActivity(BaseModel):
    type: Literal["RECORD_DAILY_ACTIVITY"] = "RECORD_DAILY_ACTIVITY"
    date: str | None = None  # YYYY-MM-DD, today when omitted
    delta: dict[str, Any] = Field(default_factory=dict)


class EvaluateInactivity(BaseModel):
    type: Literal["EVALUATE_INACTIVITY"] = "EVALUATE_INACTIVITY"


# --- Power-ups ---


class BuyPowerUp(BaseModel):
    type: Literal["BUY_POWERUP"] = "BUY_POWERUP"
    id: str
    cost: int = 0  # charged by the economy, recorded here for the log


class ActivatePowerUp(BaseModel):
    type: Literal["ACTIVATE_POWERUP"] = "ACTIVATE_POWERUP"
    id: str
    duration_minutes: OptionalNumber = None


class ExpirePowerUp(BaseModel):
    type: Literal["EXPIRE_POWERUP"] = "EXPIRE_POWERUP"
    id: str
    instance_id: str | None = None


# --- Daily reset ---


class CheckDailyReset(BaseModel):
    type: Literal["CHECK_DAILY_RESET"] = "CHECK_DAILY_RESET"


class PerformDailyReset(BaseModel):
    type: Literal["PERFORM_DAILY_RESET"] = "PERFORM_DAILY_RESET"
    reset_date: str | None = None


class TickCountdown(BaseModel):
    type: Literal["TICK_COUNTDOWN"] = "TICK_COUNTDOWN"


# --- Activity sessions ---


class StartSession(BaseModel):
    type: Literal["START_SESSION"] = "START_SESSION"
    kind: str = "general"


class StopSession(BaseModel):
    type: Literal["STOP_SESSION"] = "STOP_SESSION"


class TouchActivity(BaseModel):
    type: Literal["TOUCH_ACTIVITY"] = "TOUCH_ACTIVITY"
    kind: str = "general"


class TickSession(BaseModel):
    type: Literal["TICK_SESSION"] = "TICK_SESSION"


Command = Annotated[
    Union[
        AddXP,
        SpendXP,
        ConvertXPToGold,
        ActivateBonusXP,
        ExpireBonusXP,
        UpdateTimeBasedStreak,
        RecordDailyActivity,
        EvaluateInactivity,
        BuyPowerUp,
        ActivatePowerUp,
        ExpirePowerUp,
        CheckDailyReset,
        PerformDailyReset,
        TickCountdown,
        StartSession,
        StopSession,
        TouchActivity,
        TickSession,
    ],
    Field(discriminator="type"),
]

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(raw: dict[str, Any]) -> Command:
    """Validate a raw payload into its command model.

    Raises pydantic.ValidationError for an unknown type or missing fields.
    """
    return _command_adapter.validate_python(raw)
