"""Body composition estimates from weight and impedance (Yunmai formulas).

Scales that only report weight and bioelectrical impedance leave the body
composition to the host. These are the formulas Yunmai scales use; their
rounding steps are part of the results and kept as is.
"""

from __future__ import annotations

import math

from .models.enums import ActivityLevel, Gender


def to_yunmai_activity_level(activity_level: ActivityLevel) -> int:
    """Map an activity level to Yunmai's body type (1 = fitness, 0 = normal)."""
    if activity_level in (ActivityLevel.HEAVY, ActivityLevel.EXTREME):
        return 1
    return 0


class YunmaiLib:
    """Body metric formulas for one person.

    Args:
        sex: 1 for male, 0 for female
        height: Body height in cm
        activity_level: Selects the "fitness" body type for HEAVY and EXTREME
    """

    def __init__(self, sex: int, height: float, activity_level: ActivityLevel):
        self.sex = sex
        self.height = height
        self.fitness_body_type = to_yunmai_activity_level(activity_level) == 1

    @classmethod
    def for_gender(cls, gender: Gender, height: float, activity_level: ActivityLevel) -> YunmaiLib:
        return cls(1 if gender.is_male else 0, height, activity_level)

    def get_water(self, body_fat: float) -> float:
        """Body water in %."""
        return ((100.0 - body_fat) * 0.726 * 100.0 + 0.5) / 100.0

    def get_fat(self, age: int, weight: float, resistance: int) -> float:
        """Body fat in %, or 0.0 when the estimate is outside 5..75.

        Args:
            age: Age in years
            weight: Weight in kg
            resistance: Impedance in ohm
        """
        r = (resistance - 100.0) / 100.0
        h = self.height / 100.0
        if r >= 1:
            r = math.sqrt(r)

        fat = (weight * 1.5 / h / h) + (age * 0.08)
        if self.sex == 1:
            fat -= 10.8
        fat = (fat - 7.4) + r

        if fat < 5.0 or fat > 75.0:
            return 0.0
        return fat

    def get_muscle(self, body_fat: float) -> float:
        """Muscle in %."""
        factor = 0.7 if self.fitness_body_type else 0.67
        muscle = (100.0 - body_fat) * factor
        return (muscle * 100.0 + 0.5) / 100.0

    def get_skeletal_muscle(self, body_fat: float) -> float:
        """Skeletal muscle in %."""
        factor = 0.6 if self.fitness_body_type else 0.53
        muscle = (100.0 - body_fat) * factor
        return (muscle * 100.0 + 0.5) / 100.0

    def get_bone_mass(self, muscle: float, weight: float) -> float:
        """Bone mass in kg, from muscle % (see get_muscle) and weight."""
        h = self.height - 170.0
        if self.sex == 1:
            bone_mass = (weight * (muscle / 100.0) * 4.0) / 7.0 * 0.22 * 0.6 + h / 100.0
        else:
            bone_mass = (weight * (muscle / 100.0) * 4.0) / 7.0 * 0.34 * 0.45 + h / 100.0
        return (bone_mass * 10.0 + 0.5) / 10.0

    def get_lean_body_mass(self, weight: float, body_fat: float) -> float:
        return weight * (100.0 - body_fat) / 100.0

    def get_visceral_fat(self, body_fat: float, age: int) -> float:
        """Visceral fat rating, clamped to 1..30 (1..9 for the fitness type)."""
        if self.fitness_body_type:
            if body_fat > 15.0:
                vf = (body_fat - 15.0) / 1.1 + 12.0
            else:
                vf = -(15.0 - body_fat) / 1.4 + 12.0
            return min(max(vf, 1.0), 9.0)

        a = 18 if age < 18 or age > 120 else age
        if self.sex == 1:
            offset = 21.0 if a < 40 else 22.0 if a < 60 else 24.0
        else:
            offset = 34.0 if a < 40 else 35.0 if a < 60 else 36.0
        f = body_fat - offset

        d = 1.1 if f > 0.0 else (1.4 if self.sex == 1 else 1.8)
        vf = f / d + 9.5
        return min(max(vf, 1.0), 30.0)
