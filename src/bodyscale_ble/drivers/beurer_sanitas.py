"""Beurer BF700/BF710/BF800, Runtastic Libra and Sanitas SBF70/SBF75 scales.

All traffic goes through one characteristic (0xFFE1). Frames start with a
per-family start byte, followed by a command byte and its parameters:

    [start][command][parameters...]

The scale keeps its own user list with 64-bit user ids. Remote users are
mapped to local users by name prefix and birth year. Measurements arrive in
several frames that are acknowledged one by one and reassembled before
decoding.
"""

from __future__ import annotations

import logging
import re
import time
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum

from ..driver import ScaleDriver
from ..exceptions import InvalidFrameError
from ..models.enums import ScaleMessage, WeightUnit
from ..models.measurement import ScaleMeasurement
from ..models.user import ScaleUser
from ..protocol.chunking import ReassemblyBuffer
from ..protocol.codec import byte_in_hex, uint16_be, uint32_be
from ..protocol.uuids import from_short_code

_LOGGER = logging.getLogger(__name__)

SERVICE_CUSTOM = from_short_code(0xFFE0)
CHARACTERISTIC_WEIGHT = from_short_code(0xFFE1)

ID_START_NIBBLE_INIT = 0x6
ID_START_NIBBLE_CMD = 0x7
ID_START_NIBBLE_SET_TIME = 0x9
ID_START_NIBBLE_DISCONNECT = 0xA

CMD_SET_UNIT = 0x4D
CMD_SCALE_STATUS = 0x4F

CMD_USER_ADD = 0x31
CMD_USER_DELETE = 0x32
CMD_USER_LIST = 0x33
CMD_USER_INFO = 0x34
CMD_USER_UPDATE = 0x35
CMD_USER_DETAILS = 0x36

CMD_DO_MEASUREMENT = 0x40
CMD_GET_SAVED_MEASUREMENTS = 0x41
CMD_SAVED_MEASUREMENT = 0x42
CMD_DELETE_SAVED_MEASUREMENTS = 0x43

CMD_WEIGHT_MEASUREMENT = 0x58
CMD_MEASUREMENT = 0x59

CMD_SCALE_ACK = 0xF0
CMD_APP_ACK = 0xF1

LOW_BATTERY_LEVEL = 10
# Remote user ids handed out for new users start above this
FIRST_REMOTE_USER_ID = 100
MEASUREMENT_LENGTH = 22

SCALE_UNITS = {
    WeightUnit.KG: 1,
    WeightUnit.LB: 2,
    WeightUnit.ST: 4,
}


class DeviceType(Enum):
    """Scale family; selects the start byte and the driver name."""
    BEURER_BF700_800_RT_LIBRA = ("Beurer BF700/800 / Runtastic Libra", 0xF0)
    BEURER_BF710 = ("Beurer BF710", 0xE0)
    SANITAS_SBF70_70 = ("Sanitas SBF70/SilverCrest SBF75/Crane", 0xE0)

    def __init__(self, display_name: str, start_high_nibble: int):
        self.display_name = display_name
        self.start_byte = start_high_nibble | ID_START_NIBBLE_CMD

    @classmethod
    def from_device_name(cls, device_name: str) -> DeviceType | None:
        """Find the family of an advertised name, or None if unknown."""
        name = device_name.lower()
        if name.startswith("beurer bf710") or name == "bf700":
            return cls.BEURER_BF710
        if name.startswith(("sanitas sbf70", "sbf75", "aicdscale1")):
            return cls.SANITAS_SBF70_70
        if name.startswith((
                "beurer bf700", "beurer bf800", "bf-800", "bf-700",
                "rt-libra-b", "rt-libra-w", "libra-b", "libra-w",
        )):
            return cls.BEURER_BF700_800_RT_LIBRA
        return None


@dataclass(eq=False)
class RemoteUser:
    """User entry stored on the scale."""
    remote_user_id: int
    name: str
    year: int
    local_user_id: int | None = None
    is_new: bool = False


def decode_user_id(data: bytes, offset: int) -> int:
    return uint32_be(data, offset) << 32 | uint32_be(data, offset + 4)


def encode_user_id(remote_user: RemoteUser | None) -> bytes:
    uid = remote_user.remote_user_id if remote_user is not None else 0
    return uid.to_bytes(8, "big")


def decode_string(data: bytes, offset: int, max_length: int) -> str:
    """Zero-terminated string of at most max_length bytes."""
    raw = data[offset:offset + max_length]
    end = raw.find(0)
    if end >= 0:
        raw = raw[:end]
    return raw.decode("latin-1")


def normalize_string(value: str) -> str:
    """Strip accents and everything that is not an ASCII letter or digit."""
    return re.sub(r"[^A-Za-z0-9]", "", unicodedata.normalize("NFD", value))


def convert_user_name_to_scale(user: ScaleUser) -> str:
    normalized = normalize_string(user.name)
    if not normalized:
        return str(user.id)
    return normalized.upper()


def decode_measurement(data: bytes, user_id: int | None = None) -> ScaleMeasurement:
    """Decode a reassembled measurement record.

    Layout (big-endian): timestamp u32, weight u16 (50 g), impedance u16,
    fat u16 (0.1 %), water u16 (0.1 %), muscle u16 (0.1 %), bone u16 (50 g),
    BMR u16, AMR u16, BMI u16 (0.1).

    Raises:
        InvalidFrameError: If the record is too short
    """
    if len(data) < MEASUREMENT_LENGTH:
        raise InvalidFrameError(
            f"Measurement record must be {MEASUREMENT_LENGTH} bytes, got {len(data)}"
        )
    _LOGGER.debug(
        "BMR %d, AMR %d, BMI %.1f",
        uint16_be(data, 16), uint16_be(data, 18), uint16_be(data, 20) / 10.0,
    )
    return ScaleMeasurement(
        timestamp=datetime.fromtimestamp(uint32_be(data, 0)),
        weight=_kilograms(data, 4),
        impedance=float(uint16_be(data, 6)),
        fat=uint16_be(data, 8) / 10.0,
        water=uint16_be(data, 10) / 10.0,
        muscle=uint16_be(data, 12) / 10.0,
        bone=_kilograms(data, 14),
        user_id=user_id,
    )


def _kilograms(data: bytes, offset: int) -> float:
    return uint16_be(data, offset) * 50.0 / 1000.0


class Step(IntEnum):
    INIT_NOTIFICATIONS = 0
    SAY_HELLO = 1
    SET_TIME = 2
    SCALE_STATUS = 3
    USER_LIST = 4
    SAVED_MEASUREMENTS = 5
    CREATE_USER = 6
    USER_DETAILS = 7
    FINISH = 8
    END = 9


class BeurerSanitasDriver(ScaleDriver):
    """Beurer BF700 family and Sanitas scales."""

    driver_id = "beurer_sanitas"

    def __init__(self, *args, device_type: DeviceType | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        if device_type is None:
            device_type = DeviceType.from_device_name(self.device_name)
        if device_type is None:
            _LOGGER.warning(
                "Unknown device %r, assuming %s",
                self.device_name, DeviceType.BEURER_BF700_800_RT_LIBRA.display_name,
            )
            device_type = DeviceType.BEURER_BF700_800_RT_LIBRA
        self.device_type = device_type
        self.start_byte = device_type.start_byte

        self.remote_users: list[RemoteUser] = []
        self.current_remote_user: RemoteUser | None = None
        # Step whose answer is outstanding, -1 when nothing is expected
        self.wait_for_data_in_step = -1
        self.ready_for_data = False
        self.data_received = False
        self._buffer = ReassemblyBuffer("measurement")
        self._pending_record: bytes | None = None

    def driver_name(self) -> str:
        return self.device_type.display_name

    def _reset_session(self) -> None:
        self.remote_users = []
        self.current_remote_user = None
        self.wait_for_data_in_step = -1
        self.ready_for_data = False
        self.data_received = False
        self._buffer.reset()
        self._pending_record = None

    def alternative_start_byte(self, nibble: int) -> int:
        return (self.start_byte & 0xF0) | nibble

    # Commands

    async def _write(self, data: bytes) -> None:
        await self.write_bytes(SERVICE_CUSTOM, CHARACTERISTIC_WEIGHT, data)

    async def send_command(self, command: int, parameters: bytes = b"") -> None:
        await self._write(bytes([self.start_byte, command]) + bytes(parameters))

    async def send_alternative_start_code(self, nibble: int, parameters: bytes = b"") -> None:
        await self._write(bytes([self.alternative_start_byte(nibble)]) + bytes(parameters))

    async def send_ack(self, data: bytes) -> None:
        await self.send_command(CMD_APP_ACK, data[1:4])

    # Steps

    async def on_next_step(self, step_nr: int) -> bool:
        if step_nr == Step.INIT_NOTIFICATIONS:
            self._reset_session()
            await self.set_notification_on(SERVICE_CUSTOM, CHARACTERISTIC_WEIGHT)
        elif step_nr == Step.SAY_HELLO:
            self.wait_for_data_in_step = Step.SAY_HELLO
            await self.send_alternative_start_code(ID_START_NIBBLE_INIT, b"\x01")
            self.stop_machine_state()
        elif step_nr == Step.SET_TIME:
            # Not acknowledged
            await self.send_alternative_start_code(
                ID_START_NIBBLE_SET_TIME, int(time.time()).to_bytes(4, "big")
            )
        elif step_nr == Step.SCALE_STATUS:
            self.wait_for_data_in_step = Step.SCALE_STATUS
            await self.send_command(CMD_SCALE_STATUS, encode_user_id(None))
            self.stop_machine_state()
        elif step_nr == Step.USER_LIST:
            self.wait_for_data_in_step = Step.USER_LIST
            await self.send_command(CMD_USER_LIST)
            self.stop_machine_state()
        elif step_nr == Step.SAVED_MEASUREMENTS:
            await self._request_saved_measurements_of_next_user()
        elif step_nr == Step.CREATE_USER:
            await self._ensure_remote_user()
        elif step_nr == Step.USER_DETAILS:
            self.wait_for_data_in_step = Step.USER_DETAILS
            await self.send_command(CMD_USER_DETAILS, encode_user_id(self.current_remote_user))
            self.stop_machine_state()
        elif step_nr == Step.FINISH:
            return await self._finish()
        else:
            return False
        return True

    async def _request_saved_measurements_of_next_user(self) -> None:
        start = 0
        if self.current_remote_user in self.remote_users:
            start = self.remote_users.index(self.current_remote_user) + 1
        self.current_remote_user = next(
            (user for user in self.remote_users[start:] if user.local_user_id is not None),
            None,
        )
        if self.current_remote_user is None:
            return
        self.wait_for_data_in_step = Step.SAVED_MEASUREMENTS
        _LOGGER.debug("Requesting saved measurements of %s", self.current_remote_user.name)
        await self.send_command(CMD_GET_SAVED_MEASUREMENTS, encode_user_id(self.current_remote_user))
        self.stop_machine_state()

    async def _ensure_remote_user(self) -> None:
        user = self.user
        self.current_remote_user = next(
            (remote for remote in self.remote_users if remote.local_user_id == user.id), None
        )
        if self.current_remote_user is not None:
            return
        self.wait_for_data_in_step = Step.CREATE_USER
        await self.create_remote_user(user)
        self.stop_machine_state()

    async def _finish(self) -> bool:
        if self._pending_record is not None:
            # Not identified by now: store it for the remote user we ended with
            # or the selected user
            if self.current_remote_user is not None:
                user_id = self.current_remote_user.local_user_id
            else:
                user_id = self.user.id
            _LOGGER.info("Storing held measurement for user %s", user_id)
            self._add_measurement(self._pending_record, user_id)
            self._pending_record = None
            return True
        remote = self.current_remote_user
        if not self.data_received and remote is not None and not remote.is_new:
            # Unlikely to work, but the scale may still have a fresh reading
            self.wait_for_data_in_step = Step.FINISH
            await self.send_command(CMD_DO_MEASUREMENT, encode_user_id(remote))
            self.stop_machine_state()
            return True
        _LOGGER.debug("All finished")
        return False

    async def create_remote_user(self, user: ScaleUser) -> None:
        """Send CMD_USER_ADD for a local user.

        Payload: uid (8 bytes), nick (3 bytes, zero padded), year - 1900,
        month (0-based), day, height, sex (0x80 male) | activity (1-5).
        """
        nick = convert_user_name_to_scale(user).encode("ascii")[:3].ljust(3, b"\x00")
        birthday = user.birthday
        if self.remote_users:
            max_user_id = max(remote.remote_user_id for remote in self.remote_users)
        else:
            max_user_id = FIRST_REMOTE_USER_ID
        self.current_remote_user = RemoteUser(
            remote_user_id=max_user_id + 1,
            name=nick.rstrip(b"\x00").decode("ascii"),
            year=birthday.year,
            local_user_id=user.id,
            is_new=True,
        )
        _LOGGER.debug("Creating scale user %s for %r", self.current_remote_user.name, user.name)
        sex = 0x80 if user.gender.is_male else 0x00
        parameters = encode_user_id(self.current_remote_user) + nick + bytes([
            (birthday.year - 1900) & 0xFF,
            birthday.month - 1,
            birthday.day,
            int(user.height) & 0xFF,
            sex | (user.activity_level.value + 1),
        ])
        await self.send_command(CMD_USER_ADD, parameters)

    # Notifications

    async def on_bluetooth_notify(self, characteristic: str, data: bytes) -> None:
        if not data:
            _LOGGER.debug("Received empty message")
            return

        if data[0] == self.alternative_start_byte(ID_START_NIBBLE_INIT):
            if self.wait_for_data_in_step == Step.SAY_HELLO:
                _LOGGER.debug("Scale is ready")
            else:
                _LOGGER.warning("Init ack in wrong state, continuing with step %d", Step.SET_TIME)
                self.jump_next_to_step_nr(Step.SET_TIME)
            self.wait_for_data_in_step = -1
            self.resume_machine_state()
            return

        if data[0] != self.start_byte:
            _LOGGER.error("Got unknown start byte 0x%02x", data[0])
            return

        try:
            if data[1] == CMD_USER_INFO:
                await self.process_user_info(data)
            elif data[1] == CMD_SAVED_MEASUREMENT:
                await self.process_saved_measurement(data)
            elif data[1] == CMD_WEIGHT_MEASUREMENT:
                self.process_weight_measurement(data)
            elif data[1] == CMD_MEASUREMENT:
                await self.process_measurement(data)
            elif data[1] == CMD_SCALE_ACK:
                await self.process_scale_ack(data)
            else:
                _LOGGER.debug("Unknown command 0x%02x", data[1])
        except (IndexError, InvalidFrameError):
            _LOGGER.warning("Truncated frame [%s]", byte_in_hex(data))

    def _expect_data_in(self, what: str, *steps: int) -> bool:
        """Check that an answer arrived while one of steps was waiting.

        When another step is waiting, that step is retried on resume.
        """
        if self.wait_for_data_in_step in steps:
            return True
        if self.wait_for_data_in_step >= 0:
            _LOGGER.warning("Received %s in wrong state, retrying last step", what)
            self.jump_back_one_step()
        else:
            _LOGGER.warning("Received %s in wrong state, ignored", what)
        return False

    async def process_user_info(self, data: bytes) -> None:
        count = data[2]
        current = data[3]
        if len(self.remote_users) == current - 1:
            remote = RemoteUser(
                remote_user_id=decode_user_id(data, 4),
                name=decode_string(data, 12, 3),
                year=1900 + data[15],
            )
            self.remote_users.append(remote)
            _LOGGER.debug("Received user %d/%d: %s (%d)", current, count, remote.name, remote.year)

        await self.send_ack(data)
        if current != count:
            self.stop_machine_state()
            return

        self.map_remote_users(self.store.users)
        self._expect_data_in("final user info", Step.USER_LIST)
        self.wait_for_data_in_step = -1
        self.resume_machine_state()

    def map_remote_users(self, users: list[ScaleUser]) -> None:
        """Attach local users to remote users by name prefix and birth year."""
        for user in users:
            local_name = convert_user_name_to_scale(user)
            for remote in self.remote_users:
                if local_name.startswith(remote.name) and user.birthday.year == remote.year:
                    remote.local_user_id = user.id
                    _LOGGER.debug(
                        "Remote user %s (0x%x) is local user %r (%d)",
                        remote.name, remote.remote_user_id, user.name, user.id,
                    )
                    break

    def process_measurement_data(self, payload: bytes, first: bool, last: bool, saved: bool) -> None:
        record = self._buffer.feed(payload, first, last)
        if record is None:
            return

        remote = self.current_remote_user
        if remote is not None and (self.ready_for_data or saved):
            self._add_measurement(record, remote.local_user_id)
            if not saved:
                self.data_received = True
            self._pending_record = None
        elif not saved:
            _LOGGER.debug(
                "Holding measurement until %s",
                "the user is identified" if self.ready_for_data else "saved data is processed",
            )
            self._pending_record = record
        else:
            _LOGGER.error("Saved measurement for an unknown user, discarding")

    def _add_measurement(self, record: bytes, user_id: int | None) -> None:
        try:
            measurement = decode_measurement(record, user_id)
        except InvalidFrameError as e:
            _LOGGER.warning("Dropping measurement [%s]: %s", byte_in_hex(record), e)
            return
        self.add_scale_measurement(measurement)

    async def process_saved_measurement(self, data: bytes) -> None:
        count = data[2]
        current = data[3]
        # Every saved measurement is split in two parts
        first = current % 2 == 1
        _LOGGER.debug(
            "Saved measurement %d of %d, part %d", current // 2, count // 2, 1 if first else 2
        )
        self.process_measurement_data(data[4:], first, not first, saved=True)

        await self.send_ack(data)
        if current != count:
            self.stop_machine_state()
            return

        _LOGGER.info("All saved measurements received")
        if not self._expect_data_in("final saved measurement", Step.SAVED_MEASUREMENTS):
            if self.wait_for_data_in_step >= 0:
                self.resume_machine_state()
            # Keep data that was not asked for
            return

        self.ready_for_data = True
        await self.send_command(CMD_DELETE_SAVED_MEASUREMENTS, encode_user_id(self.current_remote_user))
        self.stop_machine_state()

    def process_weight_measurement(self, data: bytes) -> None:
        stable = data[2] == 0
        weight = _kilograms(data, 3)
        if not stable:
            _LOGGER.debug("Active measurement, weight %.2f", weight)
            self.send_message(ScaleMessage.MEASURING, weight)
            return
        _LOGGER.info("Active measurement, stable weight %.2f", weight)

    async def process_measurement(self, data: bytes) -> None:
        """Live measurement: part 1 names the remote user, parts 2.. carry the record."""
        count = data[2]
        current = data[3]
        _LOGGER.debug("Measurement part %d of %d", current, count)

        if current == 1:
            uid = decode_user_id(data, 5)
            self.current_remote_user = next(
                (remote for remote in self.remote_users if remote.remote_user_id == uid), None
            )
            if self.current_remote_user is None:
                _LOGGER.debug("No local user for remote uid %d", uid)
        else:
            self.process_measurement_data(data[4:], current == 2, current == count, saved=False)

        await self.send_ack(data)
        if current != count:
            self.stop_machine_state()
            return

        if self.current_remote_user is not None and self.ready_for_data:
            await self.send_command(
                CMD_DELETE_SAVED_MEASUREMENTS, encode_user_id(self.current_remote_user)
            )
            self.stop_machine_state()
        elif self._expect_data_in("final measurement", Step.CREATE_USER, Step.FINISH):
            self.resume_machine_state()
        elif self.wait_for_data_in_step >= 0:
            self.resume_machine_state()

    async def process_scale_ack(self, data: bytes) -> None:
        command = data[2]
        if command == CMD_SCALE_STATUS:
            await self._ack_scale_status(data)
        elif command == CMD_SET_UNIT:
            if data[3] == 0:
                _LOGGER.debug("Scale unit set")
            self._expect_data_in("set unit ack", Step.SCALE_STATUS)
            self.wait_for_data_in_step = -1
            self.resume_machine_state()
        elif command == CMD_USER_LIST:
            user_count = data[4]
            _LOGGER.debug("Scale has %d users (max %d)", user_count, data[5])
            if user_count == 0:
                self._expect_data_in("user list ack", Step.USER_LIST)
                self.wait_for_data_in_step = -1
                self.resume_machine_state()
            else:
                self.stop_machine_state()
        elif command == CMD_GET_SAVED_MEASUREMENTS:
            measurement_count = data[3]
            _LOGGER.debug("Scale has %d saved measurements", measurement_count // 2)
            if measurement_count == 0:
                self.ready_for_data = True
                self._expect_data_in("saved measurements ack", Step.SAVED_MEASUREMENTS)
                self.wait_for_data_in_step = -1
                self.resume_machine_state()
            else:
                self.stop_machine_state()
        elif command == CMD_DELETE_SAVED_MEASUREMENTS:
            if data[3] == 0:
                _LOGGER.debug("Saved measurements deleted")
            self._expect_data_in(
                "delete ack", Step.SAVED_MEASUREMENTS, Step.CREATE_USER, Step.FINISH
            )
            self.wait_for_data_in_step = -1
            self.resume_machine_state()
        elif command == CMD_USER_ADD:
            await self._ack_user_add(data)
        elif command == CMD_DO_MEASUREMENT:
            if data[3] == 0:
                _LOGGER.debug("Measure command accepted")
                self.send_message(ScaleMessage.STEP_ON_SCALE, 0)
                self.stop_machine_state()
            else:
                _LOGGER.debug("Measure command rejected")
                self._expect_data_in("measure ack", Step.CREATE_USER, Step.FINISH)
                self.wait_for_data_in_step = -1
                self.resume_machine_state()
        elif command == CMD_USER_DETAILS:
            if data[3] == 0:
                _LOGGER.debug(
                    "User details: name %s, born %d-%02d-%02d, height %d, %s, activity %d",
                    decode_string(data, 4, 3), 1900 + data[7], 1 + data[8], data[9], data[10],
                    "male" if data[11] & 0xF0 else "female", data[11] & 0x0F,
                )
            self._expect_data_in("user details ack", Step.USER_DETAILS)
            self.wait_for_data_in_step = -1
            self.resume_machine_state()
        else:
            _LOGGER.debug("Unhandled scale ack for command 0x%02x", command)

    async def _ack_scale_status(self, data: bytes) -> None:
        # data[3] is non-zero for an unknown user id; the rest is still valid
        battery_level = data[4]
        current_unit = data[7]
        _LOGGER.debug(
            "Battery %d%%, thresholds weight %.1f fat %.1f, unit %d, scale version %d",
            battery_level, data[5] / 10.0, data[6] / 10.0, current_unit, data[11],
        )
        if battery_level <= LOW_BATTERY_LEVEL:
            self.send_message(ScaleMessage.LOW_BATTERY, battery_level)

        requested_unit = SCALE_UNITS.get(self.user.scale_unit, current_unit)
        if requested_unit != current_unit:
            _LOGGER.debug("Setting scale unit to %s (%d)", self.user.scale_unit.name, requested_unit)
            await self.send_command(CMD_SET_UNIT, bytes([requested_unit]))
            self.stop_machine_state()
            return
        self._expect_data_in("scale status ack", Step.SCALE_STATUS)
        self.wait_for_data_in_step = -1
        self.resume_machine_state()

    async def _ack_user_add(self, data: bytes) -> None:
        if not self._expect_data_in("user add ack", Step.CREATE_USER):
            self.wait_for_data_in_step = -1
            self.resume_machine_state()
            return

        remote = self.current_remote_user
        if data[3] == 0 and remote is not None:
            self.remote_users.append(remote)
            if self._pending_record is not None:
                _LOGGER.debug("User identified, storing held measurement")
                self._add_measurement(self._pending_record, remote.local_user_id)
                self._pending_record = None
            self.ready_for_data = True
            # Measuring now teaches the scale the reference weight of the new user
            self.send_message(ScaleMessage.STEP_ON_SCALE_FOR_REFERENCE, 0)
            await self.send_command(CMD_DO_MEASUREMENT, encode_user_id(remote))
            self.stop_machine_state()
            return

        _LOGGER.warning("Cannot create another scale user (error 0x%02x)", data[3])
        self.send_message(ScaleMessage.MAX_USERS_REACHED, 0)
        self.jump_next_to_step_nr(Step.END)
        self.wait_for_data_in_step = -1
        self.resume_machine_state()
