"""OKOK / Chipsea scales that broadcast readings in manufacturer data.

Three layouts are known, told apart by the manufacturer id:
- 0x20CA (V20, "ADV"): 19 bytes, final flag, XOR checksum seeded with 0x20
- 0x11CA (V11, "Chipsea-BLE"): 23 bytes, unit and precision bits
- 0xF0FF (VF0): weight only, no checksum
"""

from __future__ import annotations

import logging

from ..driver import BroadcastScaleDriver
from ..exceptions import ChecksumError, InvalidFrameError
from ..models.measurement import ScaleMeasurement
from ..protocol.codec import byte_in_hex, uint16_be, uint16_le, xor_checksum

_LOGGER = logging.getLogger(__name__)

MANUFACTURER_DATA_ID_V20 = 0x20CA
MANUFACTURER_DATA_ID_V11 = 0x11CA
MANUFACTURER_DATA_ID_VF0 = 0xF0FF

V20_LENGTH = 19
V20_FINAL = 6
V20_WEIGHT = 8
V20_IMPEDANCE = 10
V20_CHECKSUM = 12
# Version byte is covered by the checksum but not part of the payload
V20_CHECKSUM_SEED = 0x20

V11_LENGTH = 23
V11_WEIGHT = 3
V11_BODY_PROPERTIES = 9
V11_CHECKSUM = 16
V11_CHECKSUM_SEED = 0xCA ^ 0x11

VF0_WEIGHT = 2

STONE_TO_KG = 6.350293
KG_TO_LB = 2.204623


def decode_v20(data: bytes) -> ScaleMeasurement | None:
    """Decode a V20 frame.

    Returns:
        The measurement, or None for a non-final (live) reading

    Raises:
        InvalidFrameError: If the length is wrong
        ChecksumError: If the checksum does not match
    """
    if len(data) != V20_LENGTH:
        raise InvalidFrameError(f"V20 frame must be {V20_LENGTH} bytes, got {len(data)}")
    if not data[V20_FINAL] & 0x01:
        return None
    checksum = xor_checksum(data, 0, V20_CHECKSUM, seed=V20_CHECKSUM_SEED)
    if data[V20_CHECKSUM] != checksum:
        raise ChecksumError(checksum, data[V20_CHECKSUM])

    divider = 100.0 if data[V20_FINAL] & 0x04 else 10.0
    weight = uint16_be(data, V20_WEIGHT)
    impedance = uint16_be(data, V20_IMPEDANCE)
    _LOGGER.debug("V20 weight %.2f, impedance %.1f", weight / divider, impedance / 10.0)
    return ScaleMeasurement(weight=weight / divider)


def decode_v11(data: bytes) -> ScaleMeasurement:
    """Decode a V11 frame, converting jin, lb and st readings to kg.

    Raises:
        InvalidFrameError: If the length is wrong
        ChecksumError: If the checksum does not match
    """
    if len(data) != V11_LENGTH:
        raise InvalidFrameError(f"V11 frame must be {V11_LENGTH} bytes, got {len(data)}")
    checksum = xor_checksum(data, 0, V11_CHECKSUM, seed=V11_CHECKSUM_SEED)
    if data[V11_CHECKSUM] != checksum:
        raise ChecksumError(checksum, data[V11_CHECKSUM])

    weight = uint16_be(data, V11_WEIGHT)
    properties = data[V11_BODY_PROPERTIES]

    precision = (properties >> 1) & 0x03
    if precision == 1:
        divider = 1.0
    elif precision == 2:
        divider = 100.0
    else:
        if precision != 0:
            _LOGGER.warning("Invalid weight precision %d, assuming 1 decimal", precision)
        divider = 10.0

    extra_weight = 0.0
    unit = (properties >> 3) & 0x03
    if unit == 1:  # jin
        divider *= 2
    elif unit == 3:  # st and lb: stones in the high byte
        extra_weight = (weight >> 8) * STONE_TO_KG
        weight &= 0xFF
        divider *= KG_TO_LB
    elif unit == 2:  # lb
        divider *= KG_TO_LB

    _LOGGER.debug("V11 weight %.2f", extra_weight + weight / divider)
    return ScaleMeasurement(weight=extra_weight + weight / divider)


def decode_vf0(data: bytes) -> ScaleMeasurement:
    """Decode a VF0 frame (little-endian weight / 10).

    Raises:
        InvalidFrameError: If the frame is too short
    """
    return ScaleMeasurement(weight=uint16_le(data, VF0_WEIGHT) / 10.0)


class OKOKDriver(BroadcastScaleDriver):
    """OKOK scales; the first final reading ends the session."""

    driver_id = "okok"

    def driver_name(self) -> str:
        return "OKOK"

    async def on_advertisement(self, manufacturer_data: dict[int, bytes]) -> None:
        try:
            if MANUFACTURER_DATA_ID_V20 in manufacturer_data:
                measurement = decode_v20(manufacturer_data[MANUFACTURER_DATA_ID_V20])
            elif MANUFACTURER_DATA_ID_V11 in manufacturer_data:
                measurement = decode_v11(manufacturer_data[MANUFACTURER_DATA_ID_V11])
            elif MANUFACTURER_DATA_ID_VF0 in manufacturer_data:
                measurement = decode_vf0(manufacturer_data[MANUFACTURER_DATA_ID_VF0])
            else:
                return
        except (ChecksumError, InvalidFrameError) as e:
            _LOGGER.debug(
                "Dropping advertisement %s: %s",
                {key: byte_in_hex(value) for key, value in manufacturer_data.items()},
                e,
            )
            return

        if measurement is None:
            return
        self.add_scale_measurement(measurement)
        await self.disconnect()
