"""Power-up inventory: buy, activate and expire time-boxed effects.

There is no timer in here. Expiry is polled by the worker, which asks for
``due_for_expiry`` and dispatches one EXPIRE_POWERUP per due activation, so
a missed poll only delays removal and never double-removes.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from progression.catalog import STREAK_SHIELD, XP_BOOST, PowerUpCatalog
from progression.clock import elapsed, shift
from progression.schemas import ActivePowerUp, ActivePowerUpView, PowerUpInventory

logger = logging.getLogger(__name__)


def _is_live(entry: ActivePowerUp, now: datetime) -> bool:
    return now < entry.expires_at


def buy(inventory: PowerUpInventory, power_up_id: str) -> PowerUpInventory:
    """Add one unit to the owned count. Payment is checked by the caller."""
    owned = dict(inventory.owned_power_ups)
    owned[power_up_id] = owned.get(power_up_id, 0) + 1
    return inventory.model_copy(update={"owned_power_ups": owned})


def _duration_minutes(value: object, default: int) -> float:
    if value is None or isinstance(value, bool):
        return float(default)
    try:
        minutes = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return float(default)
    if math.isnan(minutes):
        return float(default)
    return minutes


def activate(
    inventory: PowerUpInventory,
    power_up_id: str,
    duration_minutes: object,
    now: datetime,
    catalog: PowerUpCatalog,
) -> tuple[PowerUpInventory, ActivePowerUp | None]:
    """Consume one owned unit and start its effect.

    Returns the new inventory and the activation, or the same inventory and
    ``None`` when nothing owned, the id is unknown, or the duration is not
    positive.
    """
    if inventory.owned_power_ups.get(power_up_id, 0) <= 0:
        logger.warning("Cannot activate power-up %s: none owned", power_up_id)
        return inventory, None

    spec = catalog.get(power_up_id)
    if spec is None:
        logger.warning("Cannot activate power-up %s: not in catalog", power_up_id)
        return inventory, None

    minutes = _duration_minutes(duration_minutes, spec.default_duration)
    expires_at = None
    if minutes > 0 and not math.isinf(minutes):
        try:
            expires_at = shift(now, timedelta(minutes=minutes))
        except OverflowError:
            expires_at = None
    # sub-microsecond durations round to zero
    if expires_at is None or expires_at <= now:
        logger.warning("Cannot activate power-up %s: invalid duration %r", power_up_id, duration_minutes)
        return inventory, None

    entry = ActivePowerUp(id=power_up_id, activated_at=now, expires_at=expires_at)
    owned = dict(inventory.owned_power_ups)
    owned[power_up_id] -= 1
    return (
        inventory.model_copy(update={
            "owned_power_ups": owned,
            "active_power_ups": [*inventory.active_power_ups, entry],
        }),
        entry,
    )


def expire(
    inventory: PowerUpInventory,
    power_up_id: str,
    instance_id: str | None = None,
) -> tuple[PowerUpInventory, list[ActivePowerUp]]:
    """Remove active entries for ``power_up_id``.

    Without ``instance_id`` every active entry with that id goes, including
    concurrent activations of the same power-up. With it, only that one
    activation is removed. Returns the inventory and the removed entries;
    when nothing matches the inventory is returned as-is.
    """

    def matches(entry: ActivePowerUp) -> bool:
        if entry.id != power_up_id:
            return False
        return instance_id is None or entry.instance_id == instance_id

    removed = [entry for entry in inventory.active_power_ups if matches(entry)]
    if not removed:
        return inventory, []

    kept = [entry for entry in inventory.active_power_ups if not matches(entry)]
    return inventory.model_copy(update={"active_power_ups": kept}), removed


def due_for_expiry(inventory: PowerUpInventory, now: datetime) -> list[ActivePowerUp]:
    return [entry for entry in inventory.active_power_ups if not _is_live(entry, now)]


def count_active(inventory: PowerUpInventory, power_up_id: str) -> int:
    """Number of concurrently active activations of one power-up."""
    return sum(1 for entry in inventory.active_power_ups if entry.id == power_up_id)


def xp_multiplier(inventory: PowerUpInventory, catalog: PowerUpCatalog, now: datetime) -> float:
    """Product of the multipliers of all live xp_boost activations (1.0 if none)."""
    result = 1.0
    for entry in inventory.active_power_ups:
        if not _is_live(entry, now):
            continue
        spec = catalog.get(entry.id)
        if spec is None or spec.type != XP_BOOST:
            continue
        result *= spec.multiplier
    return result


def is_shielded(inventory: PowerUpInventory, catalog: PowerUpCatalog, now: datetime) -> bool:
    for entry in inventory.active_power_ups:
        spec = catalog.get(entry.id)
        if spec is not None and spec.type == STREAK_SHIELD and _is_live(entry, now):
            return True
    return False


def active_with_remaining(inventory: PowerUpInventory, now: datetime) -> list[ActivePowerUpView]:
    """Live activations with whole seconds remaining, soonest expiry first."""
    views = [
        ActivePowerUpView(
            id=entry.id,
            instance_id=entry.instance_id,
            expires_at=entry.expires_at,
            remaining_seconds=max(0, math.floor(elapsed(now, entry.expires_at).total_seconds())),
        )
        for entry in inventory.active_power_ups
        if _is_live(entry, now)
    ]
    views.sort(key=lambda view: view.expires_at)
    return views
