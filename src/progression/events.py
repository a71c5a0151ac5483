"""Events the engine emits for the notification channel."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    LEVEL_UP = "level_up"
    STREAK_MILESTONE = "streak_milestone"
    STREAK_BROKEN = "streak_broken"
    INACTIVITY_PENALTY = "inactivity_penalty"
    WARNING = "warning"
    POWERUP_ACTIVATED = "powerup_activated"
    POWERUP_EXPIRED = "powerup_expired"
    DAILY_RESET = "daily_reset"
    SESSION_BONUS = "session_bonus"
    XP_CONVERTED = "xp_converted"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class EngineEvent(BaseModel):
    """One user-facing notification produced by a command."""

    kind: EventKind
    title: str
    message: str
    priority: Priority = Priority.NORMAL
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict in the ``{"event": ..., "data": ...}`` envelope."""
        return {
            "event": self.kind.value,
            "data": self.model_dump(mode="json"),
        }
