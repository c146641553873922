"""Cult Smart Scale Pro.

The vendor protocol is undocumented. Weight and body composition frames are
decoded by trying several plausible layouts and accepting the first value
inside a physiological range; fields that fail the range checks are left
unset.

On top of the idle watchdog the driver gives up on the step sequence when
the scale is not configured 30 s after connecting, or has not sent a
measurement after 60 s.
"""

from __future__ import annotations

import asyncio
import logging

from ..driver import ScaleDriver
from ..models.enums import ScaleMessage
from ..models.measurement import ScaleMeasurement
from ..protocol import uuids
from ..protocol.codec import byte_in_hex, uint16_be, uint16_le, xor_checksum

_LOGGER = logging.getLogger(__name__)

SERVICE_CULT_SCALE = uuids.from_short_code(0xFFF0)
CHARACTERISTIC_MEASUREMENT = uuids.from_short_code(0xFFF1)
CHARACTERISTIC_CONTROL = uuids.from_short_code(0xFFF2)
CHARACTERISTIC_STATUS = uuids.from_short_code(0xFFF4)

START_MEASUREMENT = bytes([0xFD, 0x01, 0x00, 0xFC])

CONTROL_CONFIG = 0x37
CONTROL_MEASUREMENT_START = 0x50

STATUS_BODY_COMPOSITION = 0xBB
STATUS_BATTERY = 0xBA
STATUS_PROGRESS = 0xBC
STATUS_ERROR = 0xBE

CONNECTION_TIMEOUT = 30.0
MEASUREMENT_TIMEOUT = 60.0

LOW_BATTERY_LEVEL = 20
MIN_WEIGHT = 10.0
MAX_WEIGHT = 300.0

# (name, lower bound exclusive, upper bound inclusive)
_BOUNDS = {
    "fat": (0.0, 50.0),
    "water": (30.0, 80.0),
    "muscle": (10.0, 70.0),
    "bone": (0.5, 8.0),
    "visceral_fat": (0.0, 30.0),
}


def _plausible_weight(weight: float) -> bool:
    return MIN_WEIGHT <= weight <= MAX_WEIGHT


def find_weight(data: bytes) -> float | None:
    """Weight from a measurement frame (FFF1), trying known layouts in order."""
    if len(data) < 6:
        return None
    candidates = (
        ("LE 3-4 /100", lambda: uint16_le(data, 3) / 100.0),
        ("BE 3-4 /100", lambda: uint16_be(data, 3) / 100.0),
        ("LE 2-3 /100", lambda: uint16_le(data, 2) / 100.0),
        ("LE 3-4 /10", lambda: uint16_le(data, 3) / 10.0),
        ("LE 1-2 /100", lambda: uint16_le(data, 1) / 100.0),
    )
    for name, decode in candidates:
        weight = decode()
        if _plausible_weight(weight):
            _LOGGER.debug("Weight %.2f kg (%s)", weight, name)
            return weight
    return None


def _percentage(data: bytes, offset: int) -> float:
    """Little-endian tenths, big-endian if that is out of 0..100."""
    if offset + 1 >= len(data):
        return 0.0
    value = uint16_le(data, offset) / 10.0
    if value <= 0.0 or value > 100.0:
        value = uint16_be(data, offset) / 10.0
    return value


def _valid_metrics(values: dict[str, float]) -> dict[str, float]:
    result = {}
    for name, value in values.items():
        low, high = _BOUNDS[name]
        if low < value <= high:
            result[name] = value
    return result


def decode_body_composition(data: bytes) -> ScaleMeasurement | None:
    """Decode a 0xBB status frame (at least 20 bytes).

    Returns:
        The measurement, or None if no plausible weight was found
    """
    weight = None
    for pos in (2, 4, 6, 8):
        if pos + 1 >= len(data):
            break
        for candidate in (uint16_le(data, pos) / 100.0, uint16_be(data, pos) / 100.0):
            if _plausible_weight(candidate):
                weight = candidate
                break
        if weight is not None:
            break
    if weight is None:
        return None

    base = 6
    metrics = _valid_metrics({
        "fat": _percentage(data, base),
        "water": _percentage(data, base + 2),
        "muscle": _percentage(data, base + 4),
        "bone": _percentage(data, base + 6) / 10.0,
        "visceral_fat": _percentage(data, base + 8) / 10.0,
    })
    if len(metrics) < 3 and len(data) >= 18:
        _LOGGER.debug("Trying alternative body composition layout")
        metrics.update(_valid_metrics({
            "fat": data[10] / 10.0,
            "water": data[12] / 10.0,
            "muscle": data[14] / 10.0,
            "bone": data[16] / 100.0,
            "visceral_fat": data[17] / 10.0,
        }))
    return ScaleMeasurement(weight=weight, **metrics)


class CultSmartScaleProDriver(ScaleDriver):
    """Cult Smart Scale Pro driver."""

    driver_id = "cult_smart_scale_pro"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._reset_state()

    def _reset_state(self) -> None:
        self.measurement_complete = False
        self.device_configured = False
        self.device_manufacturer = ""
        self.device_model = ""
        self.firmware_version = ""
        self.battery_level: int | None = None
        self._connection_started: float | None = None

    def driver_name(self) -> str:
        return "Cult Smart Scale Pro"

    async def connect(self) -> None:
        self._reset_state()
        await super().connect()

    def _elapsed(self) -> float:
        if self._connection_started is None:
            return 0.0
        return asyncio.get_running_loop().time() - self._connection_started

    def _timed_out(self) -> bool:
        elapsed = self._elapsed()
        if not self.measurement_complete and elapsed > MEASUREMENT_TIMEOUT:
            _LOGGER.warning("No measurement after %.0fs", elapsed)
            self.send_message(ScaleMessage.SCALE_NOT_READY, 0)
            return True
        if not self.device_configured and elapsed > CONNECTION_TIMEOUT:
            _LOGGER.warning("Scale not configured after %.0fs", elapsed)
            self.send_message(ScaleMessage.CONNECTION_ERROR, 0)
            return True
        return False

    async def on_next_step(self, step_nr: int) -> bool:
        if self._timed_out():
            _LOGGER.warning("Timed out, skipping step %d", step_nr)
            return False
        if step_nr == 0:
            self._connection_started = asyncio.get_running_loop().time()
            await self._read_device_information()
            return True
        if step_nr == 1:
            return await self._read_battery_level()
        if step_nr == 2:
            return await self.set_notification_on(SERVICE_CULT_SCALE, CHARACTERISTIC_MEASUREMENT)
        if step_nr == 3:
            await self.set_indication_on(SERVICE_CULT_SCALE, CHARACTERISTIC_CONTROL)
            return True
        if step_nr == 4:
            return await self.set_notification_on(SERVICE_CULT_SCALE, CHARACTERISTIC_STATUS)
        if step_nr == 5:
            await self.write_bytes(
                SERVICE_CULT_SCALE, CHARACTERISTIC_CONTROL, self.build_user_profile(), response=False
            )
            self.device_configured = True
            return True
        if step_nr == 6:
            if not self.device_configured:
                _LOGGER.warning("Device not configured, not starting a measurement")
                return False
            if self._elapsed() > CONNECTION_TIMEOUT:
                _LOGGER.warning("Connection took %.0fs, not starting a measurement", self._elapsed())
                self.send_message(ScaleMessage.CONNECTION_ERROR, 0)
                return False
            await self.write_bytes(
                SERVICE_CULT_SCALE, CHARACTERISTIC_CONTROL, START_MEASUREMENT, response=False
            )
            self.send_message(ScaleMessage.MEASURING, 0)
            return True
        return False

    async def _read_string(self, characteristic: str) -> str:
        if not self.have_characteristic(uuids.SERVICE_DEVICE_INFORMATION, characteristic):
            _LOGGER.warning("Cannot read %s", uuids.pretty_print(characteristic))
            return ""
        value = await self.read_bytes(uuids.SERVICE_DEVICE_INFORMATION, characteristic)
        return value.decode("utf-8", errors="replace").strip("\x00 ")

    async def _read_device_information(self) -> None:
        self.device_manufacturer = await self._read_string(uuids.CHARACTERISTIC_MANUFACTURER_NAME_STRING)
        self.device_model = await self._read_string(uuids.CHARACTERISTIC_MODEL_NUMBER_STRING)
        self.firmware_version = await self._read_string(uuids.CHARACTERISTIC_FIRMWARE_REVISION_STRING)
        _LOGGER.debug(
            "Manufacturer %r, model %r, firmware %r",
            self.device_manufacturer, self.device_model, self.firmware_version,
        )

    async def _read_battery_level(self) -> bool:
        if not self.have_characteristic(uuids.SERVICE_BATTERY_LEVEL, uuids.CHARACTERISTIC_BATTERY_LEVEL):
            _LOGGER.warning("Failed to read battery level")
            return False
        data = await self.read_bytes(uuids.SERVICE_BATTERY_LEVEL, uuids.CHARACTERISTIC_BATTERY_LEVEL)
        if not data:
            _LOGGER.warning("Failed to read battery level")
            return False
        self._report_battery(data[0])
        return True

    def _report_battery(self, level: int) -> None:
        self.battery_level = level
        _LOGGER.debug("Battery level %d%%", level)
        if level < LOW_BATTERY_LEVEL:
            self.send_message(ScaleMessage.LOW_BATTERY, level)

    def build_user_profile(self) -> bytes:
        """[FE][user id][age][height LE16][male][unit][00][xor 0..7][FF]"""
        user = self.user
        height = int(user.height)
        payload = bytearray([
            0xFE,
            user.id & 0xFF,
            user.age() & 0xFF,
            height & 0xFF,
            (height >> 8) & 0xFF,
            1 if user.gender.is_male else 0,
            user.scale_unit.value,
            0x00,
        ])
        payload.append(xor_checksum(payload))
        payload.append(0xFF)
        return bytes(payload)

    async def on_bluetooth_notify(self, characteristic: str, data: bytes) -> None:
        if not data:
            _LOGGER.warning("Empty notification from %s", uuids.pretty_print(characteristic))
            return
        if characteristic == CHARACTERISTIC_MEASUREMENT:
            self._handle_weight(data)
        elif characteristic == CHARACTERISTIC_CONTROL:
            self._handle_control_response(data)
        elif characteristic == CHARACTERISTIC_STATUS:
            self._handle_status(data)
        elif characteristic in (
                uuids.CHARACTERISTIC_MANUFACTURER_NAME_STRING,
                uuids.CHARACTERISTIC_MODEL_NUMBER_STRING,
                uuids.CHARACTERISTIC_FIRMWARE_REVISION_STRING,
                uuids.CHARACTERISTIC_BATTERY_LEVEL,
        ):
            pass
        else:
            await super().on_bluetooth_notify(characteristic, data)

    def _handle_weight(self, data: bytes) -> None:
        weight = find_weight(data)
        if weight is None:
            _LOGGER.warning("No plausible weight in [%s]", byte_in_hex(data))
            return
        if self.measurement_complete:
            return
        self.add_scale_measurement(ScaleMeasurement(weight=weight))
        self.measurement_complete = True
        self.send_message(ScaleMessage.SCALE_READY, 0)

    def _handle_control_response(self, data: bytes) -> None:
        if len(data) < 2:
            return
        command, status = data[0], data[1]
        if command == CONTROL_CONFIG:
            if status == 0:
                _LOGGER.debug("Device configuration accepted")
            else:
                _LOGGER.warning("Device configuration failed with status 0x%02X", status)
        elif command == CONTROL_MEASUREMENT_START:
            if status == 0:
                self.send_message(ScaleMessage.MEASURING, 0)
            else:
                _LOGGER.warning("Failed to start measurement, status 0x%02X", status)
        else:
            _LOGGER.debug("Unknown control response 0x%02X, status 0x%02X", command, status)

    def _handle_status(self, data: bytes) -> None:
        if len(data) < 3:
            return
        status_type = data[0]
        if status_type == STATUS_BODY_COMPOSITION:
            if len(data) < 20:
                return
            measurement = decode_body_composition(data)
            if measurement is None:
                _LOGGER.warning("No body composition data in [%s]", byte_in_hex(data))
                return
            self.add_scale_measurement(measurement)
            self.measurement_complete = True
            self.send_message(ScaleMessage.SCALE_READY, 0)
        elif status_type == STATUS_BATTERY:
            self._report_battery(data[1])
        elif status_type == STATUS_PROGRESS:
            if data[1] == 0x01:
                self.send_message(ScaleMessage.MEASURING, 0)
            elif data[1] == 0x02:
                _LOGGER.debug("Measurement complete")
        elif status_type == STATUS_ERROR:
            _LOGGER.warning("Scale error 0x%02X", data[1])
            self.send_message(ScaleMessage.SCALE_NOT_READY, 0)
        else:
            _LOGGER.debug("Unknown status type 0x%02X", status_type)

    async def on_disconnecting(self) -> None:
        if not self.measurement_complete and self.device_configured:
            self.send_message(ScaleMessage.CONNECTION_LOST, 0)
