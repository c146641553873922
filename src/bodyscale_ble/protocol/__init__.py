"""Byte-level protocol helpers for BLE scales."""

from .chunking import ReassemblyBuffer
from .codec import (
    ByteReader,
    byte_in_hex,
    clamp,
    decode_date_time,
    encode_current_time,
    encode_date_time,
    is_bit_set,
    read_uint,
    sum_checksum,
    write_uint,
    xor_checksum,
)
from .uuids import from_short_code, pretty_print
from .weight_profile import (
    BodyCompositionFlag,
    BodyCompositionFrame,
    UserControlPointOpcode,
    UserControlPointResponse,
    UserControlPointResult,
    WeightFlag,
    WeightMeasurementFrame,
    decode_body_composition_measurement,
    decode_weight_measurement,
    encode_body_composition_measurement,
    encode_weight_measurement,
    parse_user_control_point_response,
)

__all__ = [
    "ByteReader",
    "read_uint",
    "write_uint",
    "xor_checksum",
    "sum_checksum",
    "is_bit_set",
    "byte_in_hex",
    "clamp",
    "decode_date_time",
    "encode_date_time",
    "encode_current_time",
    "ReassemblyBuffer",
    "from_short_code",
    "pretty_print",
    "WeightFlag",
    "BodyCompositionFlag",
    "WeightMeasurementFrame",
    "BodyCompositionFrame",
    "decode_weight_measurement",
    "encode_weight_measurement",
    "decode_body_composition_measurement",
    "encode_body_composition_measurement",
    "UserControlPointOpcode",
    "UserControlPointResult",
    "UserControlPointResponse",
    "parse_user_control_point_response",
]
