"""Measurement record produced by the scale drivers."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime

# Fields that merge() fills in from another measurement
_OPTIONAL_FIELDS = ("fat", "water", "muscle", "bone", "lbm", "visceral_fat", "impedance")


@dataclass(frozen=True)
class ScaleMeasurement:
    """One decoded scale reading.

    Attributes:
        weight: Body weight in kg (0.0 while not known yet)
        fat: Body fat in %
        water: Body water in %
        muscle: Muscle in %
        bone: Bone mass in kg
        lbm: Lean body mass in kg
        visceral_fat: Visceral fat rating
        impedance: Bioelectrical impedance in ohm
        timestamp: Time of the measurement (scale clock if reported)
        user_id: Local user id, or None if the scale did not say
    """
    weight: float = 0.0
    fat: float | None = None
    water: float | None = None
    muscle: float | None = None
    bone: float | None = None
    lbm: float | None = None
    visceral_fat: float | None = None
    impedance: float | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    user_id: int | None = None

    @property
    def has_weight(self) -> bool:
        return self.weight > 0.0

    def merge(self, other: ScaleMeasurement) -> ScaleMeasurement:
        """Return a copy with unset values taken from other.

        Values already present in self always win.
        """
        changes: dict[str, object] = {
            name: getattr(other, name)
            for name in _OPTIONAL_FIELDS
            if getattr(self, name) is None and getattr(other, name) is not None
        }
        if not self.has_weight and other.has_weight:
            changes["weight"] = other.weight
        return replace(self, **changes) if changes else self

    def with_user(self, user_id: int | None) -> ScaleMeasurement:
        return replace(self, user_id=user_id)

    def to_dict(self) -> dict[str, object]:
        """Export as a JSON-serializable dict (None values dropped)."""
        result: dict[str, object] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            result[item.name] = value.isoformat() if isinstance(value, datetime) else value
        return result
