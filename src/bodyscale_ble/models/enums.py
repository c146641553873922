from __future__ import annotations

from enum import IntEnum
from typing import Final


class Gender(IntEnum):
    """User gender as written to User Data Service scales."""
    MALE = 0
    FEMALE = 1

    @property
    def is_male(self) -> bool:
        return self is Gender.MALE


class ActivityLevel(IntEnum):
    """User activity level (0-based; most vendors send value + 1)."""
    SEDENTARY = 0
    MILD = 1
    MODERATE = 2
    HEAVY = 3
    EXTREME = 4


class WeightUnit(IntEnum):
    """Unit the user wants the scale display set to."""
    KG = 0
    LB = 1
    ST = 2


class BluetoothStatus(IntEnum):
    """Session status reported through the status callback."""
    RETRIEVE_SCALE_DATA = 0
    INIT_PROCESS = 1
    CONNECTION_RETRYING = 2
    CONNECTION_ESTABLISHED = 3
    CONNECTION_DISCONNECT = 4
    CONNECTION_LOST = 5
    NO_DEVICE_FOUND = 6
    UNEXPECTED_ERROR = 7
    SCALE_MESSAGE = 8
    USER_INTERACTION_REQUIRED = 9


class ScaleMessage(IntEnum):
    """User-facing messages a driver can raise during a session."""
    LOW_BATTERY = 1
    STEP_ON_SCALE = 2
    STEP_ON_SCALE_FOR_REFERENCE = 3
    MEASURING = 4
    SCALE_READY = 5
    SCALE_NOT_READY = 6
    MAX_USERS_REACHED = 7
    USER_REGISTRATION_FAILED = 8
    CONNECTION_ERROR = 9
    CONNECTION_LOST = 10


class UserInteractionType(IntEnum):
    """Kinds of input a driver may need from the user."""
    CHOOSE_USER = 0
    ENTER_CONSENT = 1


WEIGHT_UNIT_SYMBOLS: Final[dict[WeightUnit, str]] = {
    WeightUnit.KG: "kg",
    WeightUnit.LB: "lb",
    WeightUnit.ST: "st",
}

SCALE_MESSAGE_TEXT: Final[dict[ScaleMessage, str]] = {
    ScaleMessage.LOW_BATTERY: "Scale battery low ({value}%)",
    ScaleMessage.STEP_ON_SCALE: "Step on the scale",
    ScaleMessage.STEP_ON_SCALE_FOR_REFERENCE: "Step on the scale for a reference measurement",
    ScaleMessage.MEASURING: "Measuring: {value}",
    ScaleMessage.SCALE_READY: "Measurement received",
    ScaleMessage.SCALE_NOT_READY: "Scale is not ready",
    ScaleMessage.MAX_USERS_REACHED: "Scale cannot store more users",
    ScaleMessage.USER_REGISTRATION_FAILED: "Could not register user on scale",
    ScaleMessage.CONNECTION_ERROR: "Bluetooth connection error",
    ScaleMessage.CONNECTION_LOST: "Bluetooth connection lost",
}


def format_scale_message(message: ScaleMessage, value: object = None) -> str:
    """Get human-readable text for a scale message.

    Args:
        message: Message identifier
        value: Optional value (battery level, weight) to interpolate

    Returns:
        Message text, or the enum name if no text is known
    """
    template = SCALE_MESSAGE_TEXT.get(message)
    if template is None:
        return message.name
    return template.format(value=value)
