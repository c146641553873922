"""User profile as seen by the scale drivers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from .enums import ActivityLevel, Gender, WeightUnit


@dataclass(frozen=True)
class ScaleUser:
    """Local user profile.

    Drivers read it to build registration and configuration payloads and
    never change it.

    Attributes:
        id: Local user id
        name: Display name (vendors derive 3-letter initials from it)
        birthday: Date of birth
        gender: Gender
        height: Body height in cm
        activity_level: Activity level
        scale_unit: Unit to set on the scale display
        goal_weight: Goal weight in kg
    """
    id: int
    name: str = ""
    birthday: date = date(1990, 1, 1)
    gender: Gender = Gender.MALE
    height: float = 170.0
    activity_level: ActivityLevel = ActivityLevel.SEDENTARY
    scale_unit: WeightUnit = WeightUnit.KG
    goal_weight: float | None = None

    def age(self, today: date | None = None) -> int:
        """Age in full years at `today` (defaults to the current date)."""
        today = today or date.today()
        years = today.year - self.birthday.year
        if (today.month, today.day) < (self.birthday.month, self.birthday.day):
            years -= 1
        return years

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "birthday": self.birthday.isoformat(),
            "gender": self.gender.name.lower(),
            "height": self.height,
            "activity_level": self.activity_level.name.lower(),
            "scale_unit": self.scale_unit.name.lower(),
            "goal_weight": self.goal_weight,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ScaleUser:
        """Create a user from the dict written by to_dict().

        Raises:
            KeyError: If id is missing or an enum name is unknown
            ValueError: If a value cannot be parsed
        """
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            birthday=date.fromisoformat(data.get("birthday", "1990-01-01")),
            gender=Gender[str(data.get("gender", "male")).upper()],
            height=float(data.get("height", 170.0)),
            activity_level=ActivityLevel[str(data.get("activity_level", "sedentary")).upper()],
            scale_unit=WeightUnit[str(data.get("scale_unit", "kg")).upper()],
            goal_weight=data.get("goal_weight"),
        )
