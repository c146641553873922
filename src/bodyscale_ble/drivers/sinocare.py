"""Sinocare scales ("Weight Scale") that broadcast readings.

The scale never flags a reading as final, so a weight counts as settled
once the same value has been seen ten times in a row.
"""

from __future__ import annotations

import logging

from ..driver import BroadcastScaleDriver
from ..models.measurement import ScaleMeasurement
from ..protocol.codec import xor_checksum

_LOGGER = logging.getLogger(__name__)

MANUFACTURER_DATA_ID = 0xFF64

# Bytes 0..5 are the MAC address; the checksum covers 6..15
CHECKSUM_START = 6
CHECKSUM_INDEX = 16
WEIGHT_LSB = 9
WEIGHT_MSB = 10

WEIGHT_TRIGGER_THRESHOLD = 9


class SinocareDriver(BroadcastScaleDriver):
    """Sinocare broadcast scale."""

    driver_id = "sinocare"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.last_seen_weight = 0
        self.repeat_count = 0

    def driver_name(self) -> str:
        return "Sinocare"

    async def connect(self) -> None:
        self.last_seen_weight = 0
        self.repeat_count = 0
        await super().connect()

    async def on_advertisement(self, manufacturer_data: dict[int, bytes]) -> None:
        data = manufacturer_data.get(MANUFACTURER_DATA_ID)
        if data is None:
            return
        if len(data) <= CHECKSUM_INDEX:
            _LOGGER.debug("Frame too short (%d bytes)", len(data))
            return
        checksum = xor_checksum(data, CHECKSUM_START, CHECKSUM_INDEX - CHECKSUM_START)
        if data[CHECKSUM_INDEX] != checksum:
            _LOGGER.debug(
                "Checksum error, got %02x, expected %02x", data[CHECKSUM_INDEX], checksum
            )
            return

        # Dekagrams, whatever unit the display shows
        weight = data[WEIGHT_MSB] << 8 | data[WEIGHT_LSB]
        if weight <= 0:
            return
        if weight != self.last_seen_weight:
            self.last_seen_weight = weight
            self.repeat_count = 1
        elif self.repeat_count >= WEIGHT_TRIGGER_THRESHOLD:
            self.add_scale_measurement(ScaleMeasurement(weight=weight / 100.0))
            await self.disconnect()
        else:
            self.repeat_count += 1
