"""Pydantic models for engine state documents and rule results.

State documents carry data only. The store hands them out as
``model_dump(mode="json")`` dictionaries so callers never hold live objects.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field


# --- XP ---


class XPState(BaseModel):
    current_xp: int = 0
    current_level: int = 1
    xp_to_next_level: int = 1100  # threshold_for(2)
    total_xp_earned: int = 0
    xp_multiplier: float = 1.0
    bonus_xp_active: bool = False
    bonus_xp_expiry: datetime | None = None


class LevelProgress(BaseModel):
    level_xp: int
    needed_xp: int
    progress_pct: float
    xp_to_next: int


# --- Streak ---


class DayActivity(BaseModel):
    problems_solved: int = 0
    tasks_completed: int = 0
    xp_earned: int = 0
    active_minutes: int = 0
    last_activity_time: datetime | None = None


class StreakState(BaseModel):
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: str = ""
    streak_start_date: str = ""
    daily_activity: dict[str, DayActivity] = Field(default_factory=dict)
    last_penalty_date: str = ""


class StreakAdvance(BaseModel):
    new_streak: int
    broken: bool
    continued: bool
    days_inactive: int
    anomalous: bool = False


class InactivityPenalty(BaseModel):
    should_punish: bool
    xp_penalty: int
    streak_reset: bool
    description: str = ""


class StreakMilestone(BaseModel):
    milestone: int
    xp_reward: int
    gold_reward: int
    badge: str
    title: str | None = None


# --- Power-ups ---


class ActivePowerUp(BaseModel):
    id: str
    expires_at: datetime
    activated_at: datetime
    instance_id: str = Field(default_factory=lambda: uuid4().hex)


class PowerUpInventory(BaseModel):
    owned_power_ups: dict[str, int] = Field(default_factory=dict)
    active_power_ups: list[ActivePowerUp] = Field(default_factory=list)


class ActivePowerUpView(BaseModel):
    """Active power-up as shown in a HUD."""

    id: str
    instance_id: str
    expires_at: datetime
    remaining_seconds: int


# --- Daily reset ---


class DailyResetState(BaseModel):
    last_reset_date: str = ""
    next_reset_time: datetime | None = None
    reset_countdown: int = 0
    has_reset_today: bool = False
    last_checked_at: datetime | None = None


# --- Activity timer ---


class ActivityTimer(BaseModel):
    session_start_time: datetime | None = None
    total_active_time: int = 0  # ms
    current_session_time: int = 0  # ms
    is_active: bool = False
    last_activity_timestamp: datetime | None = None
    session_kind: str = ""


# --- Whole engine ---


class EngineState(BaseModel):
    xp: XPState = Field(default_factory=XPState)
    streak: StreakState = Field(default_factory=StreakState)
    power_ups: PowerUpInventory = Field(default_factory=PowerUpInventory)
    daily_reset: DailyResetState = Field(default_factory=DailyResetState)
    activity: ActivityTimer = Field(default_factory=ActivityTimer)
