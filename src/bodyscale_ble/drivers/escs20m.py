"""ES-CS20M scale.

The scale reports weight and impedance only; body composition is computed
with the Yunmai formulas. Frames of one measurement are collected until
the "stop" frame arrives and then parsed together.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from ..bodymetrics import YunmaiLib
from ..driver import ScaleDriver
from ..models.measurement import ScaleMeasurement
from ..protocol.codec import byte_in_hex, uint16_be
from ..protocol.uuids import from_short_code

_LOGGER = logging.getLogger(__name__)

SERVICE_CUR_TIME = from_short_code(0x1A10)
CHARACTERISTIC_CUR_TIME = from_short_code(0x2A11)
CHARACTERISTIC_RESULTS = from_short_code(0x2A10)

MESSAGE_ID_START_STOP_RESP = 0x11
MESSAGE_ID_WEIGHT_RESP = 0x14
MESSAGE_ID_EXTENDED_RESP = 0x15

MEASUREMENT_TYPE_START_WEIGHT_ONLY = 0x18
MEASUREMENT_TYPE_STOP_WEIGHT_ONLY = 0x17
MEASUREMENT_TYPE_START_ALL = 0x19
MEASUREMENT_TYPE_STOP_ALL = 0x18

START_TYPES = (MEASUREMENT_TYPE_START_WEIGHT_ONLY, MEASUREMENT_TYPE_START_ALL)
STOP_TYPES = (MEASUREMENT_TYPE_STOP_WEIGHT_ONLY, MEASUREMENT_TYPE_STOP_ALL)

START_MEASUREMENT = bytes.fromhex("55aa9000040100000094")
DELETE_HISTORY_DATA = bytes.fromhex("55aa9500010196")

# Step that waits for the "measurement started" frame; the one after it
# is where the "stopped" frame completes a measurement.
WAIT_FOR_START_STEP = 3
COLLECTING_STEP = 4


class ESCS20MDriver(ScaleDriver):
    """ES-CS20M body composition scale."""

    driver_id = "escs20m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.raw_measurements: list[bytes] = []

    def driver_name(self) -> str:
        return "ES-CS20M"

    async def connect(self) -> None:
        self.raw_measurements = []
        await super().connect()

    async def on_next_step(self, step_nr: int) -> bool:
        if step_nr == 0:
            await self.set_notification_on(SERVICE_CUR_TIME, CHARACTERISTIC_CUR_TIME)
        elif step_nr == 1:
            await self.set_notification_on(SERVICE_CUR_TIME, CHARACTERISTIC_RESULTS)
        elif step_nr == 2:
            await self.write_bytes(SERVICE_CUR_TIME, CHARACTERISTIC_CUR_TIME, START_MEASUREMENT)
            await self.write_bytes(SERVICE_CUR_TIME, CHARACTERISTIC_CUR_TIME, DELETE_HISTORY_DATA)
            self.stop_machine_state()
        elif step_nr == 3:
            pass
        else:
            return False
        return True

    async def on_bluetooth_notify(self, characteristic: str, data: bytes) -> None:
        _LOGGER.debug("Frame in step %d: [%s]", self.step_nr, byte_in_hex(data))
        if len(data) < 3:
            _LOGGER.warning("Dropping short frame [%s]", byte_in_hex(data))
            return
        self.raw_measurements.append(bytes(data))

        if data[2] != MESSAGE_ID_START_STOP_RESP:
            return
        if len(data) < 11:
            _LOGGER.warning("Dropping short start/stop frame [%s]", byte_in_hex(data))
            return

        measurement_type = data[10]
        if self.step_nr == COLLECTING_STEP and measurement_type in STOP_TYPES:
            measurement = self.parse_measurements()
            self.raw_measurements = []
            if measurement is None:
                _LOGGER.warning("Measurement stopped without a stable weight")
            else:
                self.add_scale_measurement(measurement)

        if self.step_nr == WAIT_FOR_START_STEP and measurement_type in START_TYPES:
            self.resume_machine_state()

    def parse_measurements(self) -> ScaleMeasurement | None:
        """Combine the collected frames into one measurement.

        Returns:
            The measurement, or None if no stable weight was reported
        """
        user = self.user
        calc = YunmaiLib.for_gender(user.gender, user.height, user.activity_level)
        frames = sorted(self.raw_measurements, key=lambda frame: frame[2])
        has_extended = any(frame[2] == MESSAGE_ID_EXTENDED_RESP for frame in frames)

        measurement: ScaleMeasurement | None = None
        for frame in frames:
            message_id = frame[2]
            if message_id == MESSAGE_ID_WEIGHT_RESP and len(frame) >= 12:
                if frame[5] == 0:
                    continue
                measurement = ScaleMeasurement(weight=uint16_be(frame, 8) / 100.0)
                _LOGGER.debug("Stable weight %.2f kg", measurement.weight)
                if frame[10] != 0 and frame[11] != 0 and not has_extended:
                    measurement = self._with_body_composition(
                        measurement, uint16_be(frame, 10), calc
                    )
            elif message_id == MESSAGE_ID_EXTENDED_RESP and len(frame) >= 11:
                if measurement is None:
                    _LOGGER.error("Weight is zero, cannot compute body composition")
                    continue
                measurement = self._with_body_composition(measurement, uint16_be(frame, 9), calc)
        return measurement

    def _with_body_composition(
            self, measurement: ScaleMeasurement, resistance: int, calc: YunmaiLib
    ) -> ScaleMeasurement:
        weight = measurement.weight
        age = self.user.age()
        fat = calc.get_fat(age, weight, resistance)
        muscle = calc.get_muscle(fat) / weight * 100.0
        _LOGGER.debug("Resistance %d ohm, fat %.1f%%", resistance, fat)
        return replace(
            measurement,
            fat=fat,
            muscle=muscle,
            water=calc.get_water(fat),
            bone=calc.get_bone_mass(muscle, weight),
            lbm=calc.get_lean_body_mass(weight, fat),
            visceral_fat=calc.get_visceral_fat(fat, age),
            impedance=float(resistance),
        )
