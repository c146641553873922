"""Data models for scale sessions."""

from .enums import (
    ActivityLevel,
    BluetoothStatus,
    Gender,
    ScaleMessage,
    UserInteractionType,
    WeightUnit,
    format_scale_message,
)
from .events import StatusEvent
from .measurement import ScaleMeasurement
from .user import ScaleUser

__all__ = [
    "ActivityLevel",
    "BluetoothStatus",
    "Gender",
    "ScaleMessage",
    "UserInteractionType",
    "WeightUnit",
    "format_scale_message",
    "StatusEvent",
    "ScaleMeasurement",
    "ScaleUser",
]
