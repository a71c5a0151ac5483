"""Per-user engine store: the single dispatch path for every mutation.

Commands run one at a time under a lock. Each handler works on a deep copy
of the state, and the copy replaces the live state only when the handler
returns. A handler that raises leaves the previous state in place.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError

from progression import activity_session, daily_reset, powerups, streak_tracker, xp_ledger
from progression.catalog import PowerUpCatalog
from progression.clock import Clock
from progression.commands import (
    ActivateBonusXP,
    ActivatePowerUp,
    AddXP,
    BuyPowerUp,
    Command,
    CommandType,
    ConvertXPToGold,
    ExpirePowerUp,
    PerformDailyReset,
    RecordDailyActivity,
    SpendXP,
    StartSession,
    StopSession,
    TouchActivity,
    UpdateTimeBasedStreak,
    parse_command,
)
from progression.config import Settings, get_settings
from progression.events import EngineEvent, EventKind, Priority
from progression.schemas import EngineState

logger = structlog.get_logger()

Subscriber = Callable[[EngineEvent], None]

# UPDATE_TIME_BASED_STREAK activity type -> day bucket counter it bumps
ACTIVITY_TYPE_COUNTERS: dict[str, str] = {
    "problem_solved": "problems_solved",
    "task_completed": "tasks_completed",
}


def _whole(value: float) -> int:
    return int(value) if math.isfinite(value) else 0


class EngineStore:
    """Holds one user's progression state and applies commands to it."""

    def __init__(
        self,
        clock: Clock,
        catalog: PowerUpCatalog,
        settings: Settings | None = None,
        state: EngineState | None = None,
        user_id: int | str | None = None,
    ) -> None:
        self._clock = clock
        self._catalog = catalog
        self._settings = settings or get_settings()
        self._lock = threading.RLock()
        self._closed = False
        self._subscribers: list[Subscriber] = []
        self.user_id = user_id
        self._log = logger.bind(user_id=user_id) if user_id is not None else logger

        self._state = state.model_copy(deep=True) if state is not None else EngineState()
        if self._state.daily_reset.next_reset_time is None:
            self._state.daily_reset = daily_reset.initialize(
                clock.now(), self._state.daily_reset.last_reset_date or None,
            )

        self._handlers: dict[CommandType, Callable[[EngineState, Any, datetime, list[EngineEvent]], None]] = {
            CommandType.ADD_XP: self._add_xp,
            CommandType.SPEND_XP: self._spend_xp,
            CommandType.CONVERT_XP_TO_GOLD: self._convert_xp_to_gold,
            CommandType.ACTIVATE_BONUS_XP: self._activate_bonus_xp,
            CommandType.EXPIRE_BONUS_XP: self._expire_bonus_xp,
            CommandType.UPDATE_TIME_BASED_STREAK: self._update_streak,
            CommandType.RECORD_DAILY_ACTIVITY: self._record_daily_activity,
            CommandType.EVALUATE_INACTIVITY: self._evaluate_inactivity,
            CommandType.BUY_POWERUP: self._buy_powerup,
            CommandType.ACTIVATE_POWERUP: self._activate_powerup,
            CommandType.EXPIRE_POWERUP: self._expire_powerup,
            CommandType.CHECK_DAILY_RESET: self._check_daily_reset,
            CommandType.PERFORM_DAILY_RESET: self._perform_daily_reset,
            CommandType.TICK_COUNTDOWN: self._tick_countdown,
            CommandType.START_SESSION: self._start_session,
            CommandType.STOP_SESSION: self._stop_session,
            CommandType.TOUCH_ACTIVITY: self._touch_activity,
            CommandType.TICK_SESSION: self._tick_session,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, command: Command) -> dict[str, Any]:
        """Apply one command and return the resulting snapshot. Never raises."""
        with self._lock:
            if self._closed:
                self._log.warning("dispatch_after_close", command=command.type)
                return self._state.model_dump(mode="json")

            handler = self._handlers[CommandType(command.type)]
            now = self._clock.now()
            working = self._state.model_copy(deep=True)
            events: list[EngineEvent] = []

            try:
                handler(working, command, now, events)
            except Exception:
                self._log.exception("command_failed", command=command.type)
                return self._state.model_dump(mode="json")

            self._state = working
            self._emit(events)
            return self._state.model_dump(mode="json")

    def dispatch_raw(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Validate and apply a raw payload. Invalid payloads are logged and dropped."""
        try:
            command = parse_command(raw)
        except ValidationError as exc:
            self._log.warning("invalid_command", payload_type=raw.get("type"), errors=exc.error_count())
            return self.snapshot()
        return self.dispatch(command)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register an event callback. Returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def close(self) -> None:
        """Refuse further commands and drop subscribers."""
        with self._lock:
            self._closed = True
            self._subscribers.clear()
        self._log.info("store_closed")

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def tracked_session(self, kind: str = activity_session.DEFAULT_KIND) -> Iterator[EngineStore]:
        """Open an activity session that is stopped on any exit path."""
        self.dispatch(StartSession(kind=kind))
        try:
            yield self
        finally:
            self.dispatch(StopSession())

    def _emit(self, events: list[EngineEvent]) -> None:
        for event in events:
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception:
                    self._log.exception("subscriber_failed", kind=event.kind.value)

    def _event(
        self,
        events: list[EngineEvent],
        kind: EventKind,
        title: str,
        message: str,
        now: datetime,
        priority: Priority = Priority.NORMAL,
        **data: Any,
    ) -> None:
        events.append(EngineEvent(
            kind=kind, title=title, message=message, priority=priority, data=data, created_at=now,
        ))

    def _warn(self, events: list[EngineEvent], now: datetime, reason: str, message: str, **data: Any) -> None:
        """Precondition failure: log it and surface it on the notification channel."""
        self._log.warning(reason, **data)
        self._event(events, EventKind.WARNING, "Action not applied", message, now, Priority.LOW, reason=reason, **data)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return self._state.model_dump(mode="json")

    def xp_snapshot(self) -> dict[str, Any]:
        with self._lock:
            return self._state.xp.model_dump(mode="json")

    def streak_snapshot(self) -> dict[str, Any]:
        with self._lock:
            return self._state.streak.model_dump(mode="json")

    def progress(self) -> dict[str, Any]:
        with self._lock:
            xp = self._state.xp
            return xp_ledger.progress(xp.current_xp, xp.current_level).model_dump()

    def hud_power_ups(self) -> list[dict[str, Any]]:
        with self._lock:
            views = powerups.active_with_remaining(self._state.power_ups, self._clock.now())
            return [view.model_dump(mode="json") for view in views]

    def reset_countdown(self) -> int:
        """Seconds until the next reset, recomputed from the clock."""
        with self._lock:
            next_reset = self._state.daily_reset.next_reset_time
            if next_reset is None:
                return 0
            return daily_reset.countdown(next_reset, self._clock.now())

    def heatmap(self, days: int = 30) -> list[dict[str, Any]]:
        """Day buckets for the last ``days`` days, oldest first."""
        with self._lock:
            end = streak_tracker.today(self._clock)
            return [
                {"date": day, **bucket.model_dump(mode="json")}
                for day, bucket in streak_tracker.activity_window(self._state.streak, end, days)
            ]

    def due_power_ups(self) -> list[tuple[str, str]]:
        """(id, instance_id) of activations whose expiry has passed."""
        with self._lock:
            due = powerups.due_for_expiry(self._state.power_ups, self._clock.now())
            return [(entry.id, entry.instance_id) for entry in due]

    def session_active(self) -> bool:
        with self._lock:
            return self._state.activity.is_active

    def session_idle(self) -> bool:
        with self._lock:
            timeout = timedelta(minutes=self._settings.session_idle_timeout_minutes)
            return activity_session.is_idle(self._state.activity, self._clock.now(), timeout)

    # ------------------------------------------------------------------
    # XP handlers
    # ------------------------------------------------------------------

    def _award_xp(
        self,
        state: EngineState,
        amount: float,
        source: str,
        multiplier: float,
        now: datetime,
        events: list[EngineEvent],
    ) -> None:
        state.xp = xp_ledger.expire_bonus_xp(state.xp, now)
        old_level = state.xp.current_level
        state.xp = xp_ledger.add_xp(state.xp, amount, source, multiplier)

        if state.xp.current_level > old_level:
            self._log.info("level_up", old_level=old_level, new_level=state.xp.current_level, source=source)
            self._event(
                events, EventKind.LEVEL_UP, "Level Up!",
                f"You reached level {state.xp.current_level}", now, Priority.HIGH,
                old_level=old_level, new_level=state.xp.current_level,
            )

    def _add_xp(self, state: EngineState, command: AddXP, now: datetime, events: list[EngineEvent]) -> None:
        if command.multiplier is not None:
            multiplier = command.multiplier
        else:
            multiplier = powerups.xp_multiplier(state.power_ups, self._catalog, now)
        if command.apply_streak_bonus:
            multiplier *= streak_tracker.streak_multiplier(state.streak.current_streak)
        self._award_xp(state, command.amount, command.source, multiplier, now, events)

    def _spend_xp(self, state: EngineState, command: SpendXP, now: datetime, events: list[EngineEvent]) -> None:
        amount = _whole(command.amount)
        if amount <= 0:
            self._log.debug("spend_ignored", amount=command.amount)
            return
        if amount > state.xp.current_xp:
            self._warn(
                events, now, "insufficient_xp", f"Not enough XP to spend {amount}",
                requested=amount, available=state.xp.current_xp,
            )
            return
        state.xp = xp_ledger.add_xp(state.xp, -amount, command.reason or "spend")

    def _convert_xp_to_gold(
        self, state: EngineState, command: ConvertXPToGold, now: datetime, events: list[EngineEvent],
    ) -> None:
        gold = _whole(command.amount)
        if gold <= 0:
            self._log.debug("conversion_ignored", amount=command.amount)
            return
        cost = xp_ledger.xp_cost_for_gold(gold)
        if cost > state.xp.current_xp:
            self._warn(
                events, now, "insufficient_xp", f"Converting {gold} gold needs {cost} XP",
                requested=cost, available=state.xp.current_xp,
            )
            return
        state.xp = xp_ledger.add_xp(state.xp, -cost, "gold_conversion")
        self._event(
            events, EventKind.XP_CONVERTED, "XP converted",
            f"Converted {cost} XP into {gold} gold", now, gold=gold, xp_cost=cost,
        )

    def _activate_bonus_xp(
        self, state: EngineState, command: ActivateBonusXP, now: datetime, events: list[EngineEvent],
    ) -> None:
        if not command.duration_hours > 0:
            self._warn(events, now, "invalid_bonus_duration", "Bonus XP needs a positive duration",
                       duration_hours=command.duration_hours)
            return
        state.xp = xp_ledger.activate_bonus_xp(state.xp, command.multiplier, command.duration_hours, now)
        self._log.info("bonus_xp_activated", multiplier=state.xp.xp_multiplier, hours=command.duration_hours)

    def _expire_bonus_xp(self, state: EngineState, command: Any, now: datetime, events: list[EngineEvent]) -> None:
        state.xp = xp_ledger.expire_bonus_xp(state.xp, now)

    # ------------------------------------------------------------------
    # Streak handlers
    # ------------------------------------------------------------------

    def _update_streak(
        self, state: EngineState, command: UpdateTimeBasedStreak, now: datetime, events: list[EngineEvent],
    ) -> None:
        moment = command.timestamp or now
        day = streak_tracker.local_date(moment, self._clock.tz)
        previous = state.streak.current_streak

        state.streak, result = streak_tracker.apply_activity(state.streak, day)
        if result.anomalous:
            self._warn(
                events, now, "streak_clock_skew", "Activity date is before your last recorded activity",
                activity_date=day, last_activity_date=state.streak.last_activity_date,
            )
            return

        counter = ACTIVITY_TYPE_COUNTERS.get(command.activity_type)
        state.streak = streak_tracker.record_activity(
            state.streak, day, {counter: 1} if counter else {}, now=moment,
        )

        if result.broken:
            self._log.info("streak_broken", days_inactive=result.days_inactive, previous=previous)
            self._event(
                events, EventKind.STREAK_BROKEN, "Streak lost",
                f"Your {previous}-day streak ended after {result.days_inactive} days away", now,
                previous_streak=previous, days_inactive=result.days_inactive,
            )

        if result.new_streak == previous:
            return
        milestone = streak_tracker.milestone_reward(result.new_streak)
        if milestone is None or not self._settings.streak_milestone_rewards:
            return

        title = milestone.title or f"{milestone.milestone}-day streak!"
        self._event(
            events, EventKind.STREAK_MILESTONE, title,
            f"{milestone.milestone} days in a row: +{milestone.xp_reward} XP", now, Priority.HIGH,
            milestone=milestone.model_dump(),
        )
        self._award_xp(state, milestone.xp_reward, "streak_milestone", 1.0, now, events)

    def _record_daily_activity(
        self, state: EngineState, command: RecordDailyActivity, now: datetime, events: list[EngineEvent],
    ) -> None:
        day = command.date or streak_tracker.local_date(now, self._clock.tz)
        if streak_tracker.parse_date(day) is None:
            self._log.warning("invalid_activity_date", date=day)
            return
        state.streak = streak_tracker.record_activity(state.streak, day, command.delta, now=now)

    def _evaluate_inactivity(self, state: EngineState, command: Any, now: datetime, events: list[EngineEvent]) -> None:
        today = streak_tracker.local_date(now, self._clock.tz)
        shielded = powerups.is_shielded(state.power_ups, self._catalog, now)
        previous = state.streak.current_streak

        state.streak, penalty = streak_tracker.evaluate_inactivity(
            state.streak, state.xp.current_xp, today, shielded,
        )
        if not (penalty.should_punish or penalty.streak_reset):
            return

        if penalty.should_punish:
            state.xp = xp_ledger.add_xp(state.xp, -penalty.xp_penalty, "inactivity_penalty")
        self._log.info(
            "inactivity_penalty", xp_penalty=penalty.xp_penalty, streak_reset=penalty.streak_reset,
        )
        self._event(
            events, EventKind.INACTIVITY_PENALTY, "Inactivity penalty", penalty.description, now, Priority.HIGH,
            xp_penalty=penalty.xp_penalty, streak_reset=penalty.streak_reset, previous_streak=previous,
        )

    # ------------------------------------------------------------------
    # Power-up handlers
    # ------------------------------------------------------------------

    def _buy_powerup(self, state: EngineState, command: BuyPowerUp, now: datetime, events: list[EngineEvent]) -> None:
        state.power_ups = powerups.buy(state.power_ups, command.id)
        self._log.info("powerup_bought", power_up=command.id, cost=command.cost)

    def _activate_powerup(
        self, state: EngineState, command: ActivatePowerUp, now: datetime, events: list[EngineEvent],
    ) -> None:
        inventory, entry = powerups.activate(
            state.power_ups, command.id, command.duration_minutes, now, self._catalog,
        )
        if entry is None:
            self._warn(events, now, "powerup_not_activated", f"Could not activate {command.id}",
                       power_up=command.id)
            return
        state.power_ups = inventory
        self._event(
            events, EventKind.POWERUP_ACTIVATED, "Power-up active",
            f"{command.id} is active until {entry.expires_at:%H:%M}", now,
            power_up=entry.id, instance_id=entry.instance_id, expires_at=entry.expires_at.isoformat(),
        )

    def _expire_powerup(
        self, state: EngineState, command: ExpirePowerUp, now: datetime, events: list[EngineEvent],
    ) -> None:
        state.power_ups, removed = powerups.expire(state.power_ups, command.id, command.instance_id)
        if not removed:
            self._log.debug("expire_no_match", power_up=command.id, instance_id=command.instance_id)
            return
        self._event(
            events, EventKind.POWERUP_EXPIRED, "Power-up expired", f"{command.id} has worn off", now,
            Priority.LOW, power_up=command.id, instance_ids=[entry.instance_id for entry in removed],
        )

    # ------------------------------------------------------------------
    # Daily reset handlers
    # ------------------------------------------------------------------

    def _reset(self, state: EngineState, now: datetime, reset_date: str | None, events: list[EngineEvent]) -> None:
        state.daily_reset, fired = daily_reset.perform_reset(state.daily_reset, now, reset_date)
        if fired:
            self._log.info("daily_reset", reset_date=state.daily_reset.last_reset_date)
            self._event(
                events, EventKind.DAILY_RESET, "New day", "Daily challenges have been reset", now,
                Priority.LOW, reset_date=state.daily_reset.last_reset_date,
            )

    def _check_daily_reset(self, state: EngineState, command: Any, now: datetime, events: list[EngineEvent]) -> None:
        marker = state.daily_reset.last_checked_at
        if marker is not None and daily_reset.rolled_over(marker, now):
            self._log.info("day_rolled_over", previous=marker.isoformat(), now=now.isoformat())
            self._evaluate_inactivity(state, command, now, events)
            self._reset(state, now, None, events)
        state.daily_reset.last_checked_at = now

    def _perform_daily_reset(
        self, state: EngineState, command: PerformDailyReset, now: datetime, events: list[EngineEvent],
    ) -> None:
        reset_date = None
        if command.reset_date:
            reset_date = daily_reset.valid_reset_date(command.reset_date, now)
            if reset_date is None:
                self._warn(
                    events, now, "invalid_reset_date", "Reset date must be a past or current day",
                    reset_date=command.reset_date,
                )
                return
        self._reset(state, now, reset_date, events)

    def _tick_countdown(self, state: EngineState, command: Any, now: datetime, events: list[EngineEvent]) -> None:
        state.daily_reset = daily_reset.refresh(state.daily_reset, now)

    # ------------------------------------------------------------------
    # Activity session handlers
    # ------------------------------------------------------------------

    def _start_session(self, state: EngineState, command: StartSession, now: datetime, events: list[EngineEvent]) -> None:
        state.activity = activity_session.start(state.activity, now, command.kind)

    def _stop_session(self, state: EngineState, command: Any, now: datetime, events: list[EngineEvent]) -> None:
        state.activity, duration_ms = activity_session.stop(state.activity, now)
        if duration_ms <= 0:
            return

        minutes = duration_ms // activity_session.MS_PER_MINUTE
        if minutes:
            today = streak_tracker.local_date(now, self._clock.tz)
            state.streak = streak_tracker.record_activity(state.streak, today, {"active_minutes": minutes}, now=now)

        bonus = activity_session.duration_bonus(duration_ms, self._settings.session_bonus_step_minutes)
        self._log.info("session_stopped", duration_ms=duration_ms, bonus=bonus)
        if bonus:
            self._award_xp(state, bonus, "session_bonus", 1.0, now, events)
            self._event(
                events, EventKind.SESSION_BONUS, "Focus bonus",
                f"+{bonus} XP for {activity_session.format_duration(duration_ms)} of activity", now,
                xp=bonus, duration_ms=duration_ms,
            )

    def _touch_activity(
        self, state: EngineState, command: TouchActivity, now: datetime, events: list[EngineEvent],
    ) -> None:
        state.activity = activity_session.touch(state.activity, now, command.kind)

    def _tick_session(self, state: EngineState, command: Any, now: datetime, events: list[EngineEvent]) -> None:
        state.activity = activity_session.tick(state.activity, now)
