"""Bluetooth SIG Weight Scale, Body Composition and User Data frames.

Measurements arrive as a flags field followed by optional fields. A field is
on the wire only if its flag is set, and fields always appear in the order
listed below, so decoding walks the flags once with a ByteReader.

Weight Measurement (0x2A9D):
    [flags:1][weight:2][timestamp:7?][user index:1?][bmi:2? height:2?]

Body Composition Measurement (0x2A9C):
    [flags:2][fat %:2][timestamp:7?][user index:1?][bmr:2?][muscle %:2?]
    [muscle mass:2?][fat free mass:2?][soft lean mass:2?][body water mass:2?]
    [impedance:2?][weight:2?][height:2?]

All integers are little-endian.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import IntEnum, IntFlag

from .codec import ByteReader, encode_date_time, write_uint

# Mass resolution in kg (SI) or lb (imperial)
KG_RESOLUTION = 0.005
LB_RESOLUTION = 0.01
LB_TO_KG = 0.45359237

JOULES_PER_KCAL = 4.1868


class WeightFlag(IntFlag):
    """Flags of the Weight Measurement characteristic."""
    IMPERIAL = 0x01
    TIMESTAMP = 0x02
    USER_ID = 0x04
    BMI_AND_HEIGHT = 0x08


class BodyCompositionFlag(IntFlag):
    """Flags of the Body Composition Measurement characteristic."""
    IMPERIAL = 0x0001
    TIMESTAMP = 0x0002
    USER_ID = 0x0004
    BMR = 0x0008
    MUSCLE_PERCENTAGE = 0x0010
    MUSCLE_MASS = 0x0020
    FAT_FREE_MASS = 0x0040
    SOFT_LEAN_MASS = 0x0080
    BODY_WATER_MASS = 0x0100
    IMPEDANCE = 0x0200
    WEIGHT = 0x0400
    HEIGHT = 0x0800
    MULTIPLE_PACKET = 0x1000


# uint16 fields after the user index, in wire order
_BODY_COMPOSITION_UINT16_FIELDS: tuple[tuple[BodyCompositionFlag, str], ...] = (
    (BodyCompositionFlag.BMR, "bmr_raw"),
    (BodyCompositionFlag.MUSCLE_PERCENTAGE, "muscle_percentage_raw"),
    (BodyCompositionFlag.MUSCLE_MASS, "muscle_mass_raw"),
    (BodyCompositionFlag.FAT_FREE_MASS, "fat_free_mass_raw"),
    (BodyCompositionFlag.SOFT_LEAN_MASS, "soft_lean_mass_raw"),
    (BodyCompositionFlag.BODY_WATER_MASS, "body_water_mass_raw"),
    (BodyCompositionFlag.IMPEDANCE, "impedance_raw"),
    (BodyCompositionFlag.WEIGHT, "weight_raw"),
    (BodyCompositionFlag.HEIGHT, "height_raw"),
)


def _mass(raw: int | None, imperial: bool) -> float | None:
    if raw is None:
        return None
    return raw * (LB_RESOLUTION if imperial else KG_RESOLUTION)


def to_kilograms(value: float, imperial: bool) -> float:
    return value * LB_TO_KG if imperial else value


@dataclass(frozen=True)
class WeightMeasurementFrame:
    """Decoded Weight Measurement, keeping raw field values.

    Scaled values are exposed as properties in the unit the scale used
    (kg or lb).
    """
    flags: int
    weight_raw: int
    timestamp: datetime | None = None
    user_index: int | None = None
    bmi_raw: int | None = None
    height_raw: int | None = None

    @property
    def is_imperial(self) -> bool:
        return bool(self.flags & WeightFlag.IMPERIAL)

    @property
    def weight(self) -> float:
        return _mass(self.weight_raw, self.is_imperial)

    @property
    def weight_kg(self) -> float:
        return to_kilograms(self.weight, self.is_imperial)

    @property
    def bmi(self) -> float | None:
        return None if self.bmi_raw is None else self.bmi_raw * 0.1

    @property
    def height(self) -> float | None:
        """Height in meters (SI) or inches (imperial)."""
        if self.height_raw is None:
            return None
        return self.height_raw * (0.1 if self.is_imperial else 0.001)


def decode_weight_measurement(data: bytes) -> WeightMeasurementFrame:
    """Decode a Weight Measurement notification.

    Raises:
        InvalidFrameError: If a flagged field is missing from the frame
    """
    reader = ByteReader(data)
    flags = reader.uint8()
    weight_raw = reader.uint16()
    timestamp = reader.date_time() if flags & WeightFlag.TIMESTAMP else None
    user_index = reader.uint8() if flags & WeightFlag.USER_ID else None
    bmi_raw = height_raw = None
    if flags & WeightFlag.BMI_AND_HEIGHT:
        bmi_raw = reader.uint16()
        height_raw = reader.uint16()
    return WeightMeasurementFrame(
        flags=flags,
        weight_raw=weight_raw,
        timestamp=timestamp,
        user_index=user_index,
        bmi_raw=bmi_raw,
        height_raw=height_raw,
    )


def encode_weight_measurement(frame: WeightMeasurementFrame) -> bytes:
    """Encode a Weight Measurement, writing only the flagged fields.

    Raises:
        ValueError: If a flagged field has no value
    """
    out = bytearray([frame.flags & 0xFF])
    out += write_uint(frame.weight_raw, 2)
    if frame.flags & WeightFlag.TIMESTAMP:
        if frame.timestamp is None:
            raise ValueError("Timestamp flag set but no timestamp given")
        out += encode_date_time(frame.timestamp)
    if frame.flags & WeightFlag.USER_ID:
        if frame.user_index is None:
            raise ValueError("User id flag set but no user index given")
        out.append(frame.user_index & 0xFF)
    if frame.flags & WeightFlag.BMI_AND_HEIGHT:
        if frame.bmi_raw is None or frame.height_raw is None:
            raise ValueError("BMI/height flag set but values missing")
        out += write_uint(frame.bmi_raw, 2)
        out += write_uint(frame.height_raw, 2)
    return bytes(out)


@dataclass(frozen=True)
class BodyCompositionFrame:
    """Decoded Body Composition Measurement, keeping raw field values."""
    flags: int
    fat_percentage_raw: int
    timestamp: datetime | None = None
    user_index: int | None = None
    bmr_raw: int | None = None
    muscle_percentage_raw: int | None = None
    muscle_mass_raw: int | None = None
    fat_free_mass_raw: int | None = None
    soft_lean_mass_raw: int | None = None
    body_water_mass_raw: int | None = None
    impedance_raw: int | None = None
    weight_raw: int | None = None
    height_raw: int | None = None

    @property
    def is_imperial(self) -> bool:
        return bool(self.flags & BodyCompositionFlag.IMPERIAL)

    @property
    def is_multiple_packet(self) -> bool:
        return bool(self.flags & BodyCompositionFlag.MULTIPLE_PACKET)

    @property
    def fat_percentage(self) -> float:
        return self.fat_percentage_raw * 0.1

    @property
    def bmr_kcal(self) -> int | None:
        """Basal metabolism, sent in kJ, converted to kcal."""
        if self.bmr_raw is None:
            return None
        return int(self.bmr_raw / JOULES_PER_KCAL + 0.5)

    @property
    def muscle_percentage(self) -> float | None:
        if self.muscle_percentage_raw is None:
            return None
        return self.muscle_percentage_raw * 0.1

    @property
    def muscle_mass(self) -> float | None:
        return _mass(self.muscle_mass_raw, self.is_imperial)

    @property
    def fat_free_mass(self) -> float | None:
        return _mass(self.fat_free_mass_raw, self.is_imperial)

    @property
    def soft_lean_mass(self) -> float | None:
        return _mass(self.soft_lean_mass_raw, self.is_imperial)

    @property
    def body_water_mass(self) -> float | None:
        return _mass(self.body_water_mass_raw, self.is_imperial)

    @property
    def impedance(self) -> float | None:
        return None if self.impedance_raw is None else self.impedance_raw * 0.1

    @property
    def weight(self) -> float | None:
        return _mass(self.weight_raw, self.is_imperial)


def decode_body_composition_measurement(data: bytes) -> BodyCompositionFrame:
    """Decode a Body Composition Measurement notification.

    Raises:
        InvalidFrameError: If a flagged field is missing from the frame
    """
    reader = ByteReader(data)
    flags = reader.uint16()
    fields: dict[str, object] = {
        "flags": flags,
        "fat_percentage_raw": reader.uint16(),
    }
    if flags & BodyCompositionFlag.TIMESTAMP:
        fields["timestamp"] = reader.date_time()
    if flags & BodyCompositionFlag.USER_ID:
        fields["user_index"] = reader.uint8()
    for flag, name in _BODY_COMPOSITION_UINT16_FIELDS:
        if flags & flag:
            fields[name] = reader.uint16()
    return BodyCompositionFrame(**fields)


def encode_body_composition_measurement(frame: BodyCompositionFrame) -> bytes:
    """Encode a Body Composition Measurement, writing only the flagged fields.

    Raises:
        ValueError: If a flagged field has no value
    """
    out = bytearray(write_uint(frame.flags, 2))
    out += write_uint(frame.fat_percentage_raw, 2)
    if frame.flags & BodyCompositionFlag.TIMESTAMP:
        if frame.timestamp is None:
            raise ValueError("Timestamp flag set but no timestamp given")
        out += encode_date_time(frame.timestamp)
    if frame.flags & BodyCompositionFlag.USER_ID:
        if frame.user_index is None:
            raise ValueError("User id flag set but no user index given")
        out.append(frame.user_index & 0xFF)
    for flag, name in _BODY_COMPOSITION_UINT16_FIELDS:
        if frame.flags & flag:
            value = getattr(frame, name)
            if value is None:
                raise ValueError(f"{flag.name} flag set but {name} missing")
            out += write_uint(value, 2)
    return bytes(out)


class UserControlPointOpcode(IntEnum):
    """User Data Service control point op codes."""
    REGISTER_NEW_USER = 0x01
    CONSENT = 0x02
    DELETE_USER_DATA = 0x03
    LIST_ALL_USERS = 0x04
    DELETE_USERS = 0x05
    RESPONSE = 0x20


class UserControlPointResult(IntEnum):
    """Result codes carried by control point responses."""
    SUCCESS = 0x01
    OP_CODE_NOT_SUPPORTED = 0x02
    INVALID_PARAMETER = 0x03
    OPERATION_FAILED = 0x04
    USER_NOT_AUTHORIZED = 0x05


@dataclass(frozen=True)
class UserControlPointResponse:
    """Indication sent by the scale in answer to a control point write."""
    request_opcode: int
    result: int
    parameter: bytes = b""

    @property
    def success(self) -> bool:
        return self.result == UserControlPointResult.SUCCESS

    @property
    def user_index(self) -> int | None:
        """Scale user index returned by REGISTER_NEW_USER."""
        return self.parameter[0] if self.parameter else None


def parse_user_control_point_response(data: bytes) -> UserControlPointResponse | None:
    """Parse a control point indication.

    Returns:
        The response, or None if the frame is not a response
    """
    if len(data) < 3 or data[0] != UserControlPointOpcode.RESPONSE:
        return None
    return UserControlPointResponse(
        request_opcode=data[1],
        result=data[2],
        parameter=bytes(data[3:]),
    )


def build_register_new_user_command(consent_code: int) -> bytes:
    """Build REGISTER_NEW_USER: [0x01][consent:2 LE]."""
    return bytes([UserControlPointOpcode.REGISTER_NEW_USER]) + write_uint(consent_code, 2)


def build_consent_command(user_index: int, consent_code: int) -> bytes:
    """Build CONSENT: [0x02][user index:1][consent:2 LE]."""
    return (
        bytes([UserControlPointOpcode.CONSENT, user_index & 0xFF])
        + write_uint(consent_code, 2)
    )


def build_delete_user_data_command() -> bytes:
    return bytes([UserControlPointOpcode.DELETE_USER_DATA])


def build_date_of_birth(birthday: date) -> bytes:
    """Date of Birth characteristic: [year:2 LE][month][day]."""
    return write_uint(birthday.year, 2) + bytes([birthday.month, birthday.day])


def build_gender(gender: int) -> bytes:
    return bytes([gender & 0xFF])


def build_height(height_cm: float) -> bytes:
    return write_uint(int(height_cm), 2)


def build_change_increment(value: int = 1) -> bytes:
    return write_uint(value, 4)
