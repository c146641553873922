"""GATT UUIDs used by the scale drivers.

bleak identifies services and characteristics by lower-case 128-bit UUID
strings, so every constant here is in that form.
"""

from __future__ import annotations

from typing import Final

_BASE_UUID_SUFFIX: Final = "-0000-1000-8000-00805f9b34fb"


def from_short_code(short_code: int) -> str:
    """Expand a 16-bit SIG short code into a full UUID string."""
    return f"0000{short_code & 0xFFFF:04x}{_BASE_UUID_SUFFIX}"


def pretty_print(uuid: str) -> str:
    """Return "0x2A9D" for SIG base UUIDs, otherwise the UUID unchanged."""
    lowered = uuid.lower()
    if lowered.startswith("0000") and lowered.endswith(_BASE_UUID_SUFFIX):
        return f"0x{lowered[4:8].upper()}"
    return uuid


# Services
SERVICE_GENERIC_ACCESS: Final = from_short_code(0x1800)
SERVICE_DEVICE_INFORMATION: Final = from_short_code(0x180A)
SERVICE_CURRENT_TIME: Final = from_short_code(0x1805)
SERVICE_BATTERY_LEVEL: Final = from_short_code(0x180F)
SERVICE_USER_DATA: Final = from_short_code(0x181C)
SERVICE_BODY_COMPOSITION: Final = from_short_code(0x181B)
SERVICE_WEIGHT_SCALE: Final = from_short_code(0x181D)

# Characteristics
CHARACTERISTIC_DEVICE_NAME: Final = from_short_code(0x2A00)
CHARACTERISTIC_BATTERY_LEVEL: Final = from_short_code(0x2A19)
CHARACTERISTIC_MODEL_NUMBER_STRING: Final = from_short_code(0x2A24)
CHARACTERISTIC_FIRMWARE_REVISION_STRING: Final = from_short_code(0x2A26)
CHARACTERISTIC_MANUFACTURER_NAME_STRING: Final = from_short_code(0x2A29)
CHARACTERISTIC_CURRENT_TIME: Final = from_short_code(0x2A2B)
CHARACTERISTIC_USER_DATE_OF_BIRTH: Final = from_short_code(0x2A85)
CHARACTERISTIC_USER_GENDER: Final = from_short_code(0x2A8C)
CHARACTERISTIC_USER_HEIGHT: Final = from_short_code(0x2A8E)
CHARACTERISTIC_CHANGE_INCREMENT: Final = from_short_code(0x2A99)
CHARACTERISTIC_USER_INDEX: Final = from_short_code(0x2A9A)
CHARACTERISTIC_BODY_COMPOSITION_MEASUREMENT: Final = from_short_code(0x2A9C)
CHARACTERISTIC_WEIGHT_MEASUREMENT: Final = from_short_code(0x2A9D)
CHARACTERISTIC_USER_CONTROL_POINT: Final = from_short_code(0x2A9F)
