"""Read-only power-up catalog lookup.

The catalog content itself (names, prices, art) is static data owned by the
game; the engine only needs duration, multiplier and type per id.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

XP_BOOST = "xp_boost"
STREAK_SHIELD = "streak_shield"


class PowerUpSpec(BaseModel):
    id: str
    default_duration: int  # minutes
    multiplier: float = 1.0
    type: str = XP_BOOST
    rarity: str = "common"


class PowerUpCatalog(Protocol):
    def get(self, power_up_id: str) -> PowerUpSpec | None: ...


class InMemoryCatalog:
    """Catalog backed by a dict of specs keyed by id."""

    def __init__(self, specs: Iterable[PowerUpSpec] | Mapping[str, dict] = ()) -> None:
        self._specs: dict[str, PowerUpSpec] = {}
        if isinstance(specs, Mapping):
            for power_up_id, raw in specs.items():
                self._specs[power_up_id] = PowerUpSpec(id=power_up_id, **raw)
        else:
            for spec in specs:
                self._specs[spec.id] = spec

    @classmethod
    def from_json(cls, path: str | Path) -> InMemoryCatalog:
        """Load specs from a JSON object of {id: {default_duration, multiplier, type, rarity}}."""
        with open(path, encoding="utf-8") as f:
            return cls(json.load(f))

    def get(self, power_up_id: str) -> PowerUpSpec | None:
        return self._specs.get(power_up_id)

    def __contains__(self, power_up_id: object) -> bool:
        return power_up_id in self._specs

    def __len__(self) -> int:
        return len(self._specs)
