"""Driver for scales implementing the Bluetooth SIG weight scale profile.

Covers the Weight Scale, Body Composition and User Data services. Scales
that keep their own user table are registered with a consent code; the
scale answers with a user index that is persisted per local user id so
later sessions only need to send the consent.
"""

from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import date, datetime
from enum import IntEnum

from ..driver import ScaleDriver
from ..exceptions import ProtocolError
from ..models.enums import ActivityLevel, Gender, ScaleMessage, UserInteractionType
from ..models.measurement import ScaleMeasurement
from ..models.user import ScaleUser
from ..protocol import uuids
from ..protocol.codec import ByteReader, byte_in_hex, encode_current_time, uint8, uint32_le
from ..protocol.weight_profile import (
    UserControlPointOpcode,
    UserControlPointResult,
    build_change_increment,
    build_consent_command,
    build_date_of_birth,
    build_delete_user_data_command,
    build_gender,
    build_height,
    build_register_new_user_command,
    decode_body_composition_measurement,
    decode_weight_measurement,
    parse_user_control_point_response,
    to_kilograms,
)
from ..store import UNSET

_LOGGER = logging.getLogger(__name__)

CONSENT_CODE_LIMIT = 10000

USER_LIST_ENTRY = 0
USER_LIST_END = 1
USER_LIST_EMPTY = 2


class Step(IntEnum):
    """Setup sequence of the standard profile."""
    START = 0
    READ_DEVICE_MANUFACTURER = 1
    READ_DEVICE_MODEL = 2
    WRITE_CURRENT_TIME = 3
    SET_NOTIFY_WEIGHT_MEASUREMENT = 4
    SET_NOTIFY_BODY_COMPOSITION_MEASUREMENT = 5
    SET_NOTIFY_CHANGE_INCREMENT = 6
    SET_INDICATION_USER_CONTROL_POINT = 7
    SET_NOTIFY_BATTERY_LEVEL = 8
    READ_BATTERY_LEVEL = 9
    SET_NOTIFY_VENDOR_SPECIFIC_USER_LIST = 10
    REQUEST_VENDOR_SPECIFIC_USER_LIST = 11
    REGISTER_NEW_SCALE_USER = 12
    SELECT_SCALE_USER = 13
    SET_SCALE_USER_DATA = 14
    REQUEST_MEASUREMENT = 15
    MAX_STEP = 16


class StandardWeightProfileDriver(ScaleDriver):
    """Generic weight scale profile driver.

    Vendor variants override the hook methods (user list, activity level,
    initials, measurement request).
    """

    driver_id = "standard_weight_profile"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.register_new_user = False
        self.scale_users: list[ScaleUser] = []
        self._previous_measurement: ScaleMeasurement | None = None
        self._have_battery_service = False

    def driver_name(self) -> str:
        return "Bluetooth Standard Weight Profile"

    def vendor_specific_max_user_count(self) -> int:
        return 0

    async def on_next_step(self, step_nr: int) -> bool:
        if step_nr >= Step.MAX_STEP:
            return False
        step = Step(step_nr)
        _LOGGER.debug("Step %d: %s", step_nr, step.name)
        user = self.user

        if step is Step.START:
            pass
        elif step is Step.READ_DEVICE_MANUFACTURER:
            await self._read_if_present(
                uuids.SERVICE_DEVICE_INFORMATION, uuids.CHARACTERISTIC_MANUFACTURER_NAME_STRING
            )
        elif step is Step.READ_DEVICE_MODEL:
            await self._read_if_present(
                uuids.SERVICE_DEVICE_INFORMATION, uuids.CHARACTERISTIC_MODEL_NUMBER_STRING
            )
        elif step is Step.WRITE_CURRENT_TIME:
            await self.write_current_time()
        elif step is Step.SET_NOTIFY_WEIGHT_MEASUREMENT:
            await self.set_indication_on(
                uuids.SERVICE_WEIGHT_SCALE, uuids.CHARACTERISTIC_WEIGHT_MEASUREMENT
            )
        elif step is Step.SET_NOTIFY_BODY_COMPOSITION_MEASUREMENT:
            await self.set_indication_on(
                uuids.SERVICE_BODY_COMPOSITION, uuids.CHARACTERISTIC_BODY_COMPOSITION_MEASUREMENT
            )
        elif step is Step.SET_NOTIFY_CHANGE_INCREMENT:
            await self.set_notification_on(
                uuids.SERVICE_USER_DATA, uuids.CHARACTERISTIC_CHANGE_INCREMENT
            )
        elif step is Step.SET_INDICATION_USER_CONTROL_POINT:
            await self.set_indication_on(
                uuids.SERVICE_USER_DATA, uuids.CHARACTERISTIC_USER_CONTROL_POINT
            )
        elif step is Step.SET_NOTIFY_BATTERY_LEVEL:
            self._have_battery_service = await self.set_notification_on(
                uuids.SERVICE_BATTERY_LEVEL, uuids.CHARACTERISTIC_BATTERY_LEVEL
            )
        elif step is Step.READ_BATTERY_LEVEL:
            if self._have_battery_service:
                await self.read_bytes(uuids.SERVICE_BATTERY_LEVEL, uuids.CHARACTERISTIC_BATTERY_LEVEL)
        elif step is Step.SET_NOTIFY_VENDOR_SPECIFIC_USER_LIST:
            await self.set_notify_vendor_specific_user_list()
        elif step is Step.REQUEST_VENDOR_SPECIFIC_USER_LIST:
            self.scale_users.clear()
            if await self.request_vendor_specific_user_list():
                self.stop_machine_state()
        elif step is Step.REGISTER_NEW_SCALE_USER:
            if (self.store.get_consent_code(user.id) == UNSET
                    or self.store.get_scale_index(user.id) == UNSET):
                self.register_new_user = True
            if self.register_new_user:
                consent_code = random.randrange(CONSENT_CODE_LIMIT)
                self.store.store_consent_code(user.id, consent_code)
                _LOGGER.debug("Registering new scale user, consent code %d", consent_code)
                await self.write_bytes(
                    uuids.SERVICE_USER_DATA,
                    uuids.CHARACTERISTIC_USER_CONTROL_POINT,
                    build_register_new_user_command(consent_code),
                )
                self.stop_machine_state()
        elif step is Step.SELECT_SCALE_USER:
            await self.set_user(user.id)
            self.stop_machine_state()
        elif step is Step.SET_SCALE_USER_DATA:
            if self.register_new_user:
                await self.write_user_data_to_scale()
                # All user data has to be stored before the reference measurement starts
                self.stop_machine_state()
                await self.read_bytes(uuids.SERVICE_USER_DATA, uuids.CHARACTERISTIC_CHANGE_INCREMENT)
        elif step is Step.REQUEST_MEASUREMENT:
            if self.register_new_user:
                await self.request_measurement()
                self.stop_machine_state()
                self.send_message(ScaleMessage.STEP_ON_SCALE_FOR_REFERENCE, 0)
        return True

    async def _read_if_present(self, service: str, characteristic: str) -> None:
        if self.have_characteristic(service, characteristic):
            await self.read_bytes(service, characteristic)

    # Vendor hooks

    async def set_notify_vendor_specific_user_list(self) -> bool:
        """Subscribe to the vendor user list; False if there is none."""
        return False

    async def request_vendor_specific_user_list(self) -> bool:
        """Ask the scale for its user list.

        Returns:
            True if a request was sent and the machine should wait for it
        """
        return False

    async def write_activity_level(self) -> None:
        _LOGGER.debug("Writing the activity level is not supported")

    async def write_initials(self) -> None:
        _LOGGER.debug("Writing user initials is not supported")

    async def request_measurement(self) -> None:
        _LOGGER.debug("Take measurement command not supported")

    # Commands

    async def write_current_time(self) -> None:
        await self.write_bytes(
            uuids.SERVICE_CURRENT_TIME,
            uuids.CHARACTERISTIC_CURRENT_TIME,
            encode_current_time(datetime.now()),
        )

    async def set_user(self, user_id: int) -> None:
        """Send the consent for the scale user mapped to user_id."""
        scale_index = self.store.get_scale_index(user_id)
        consent_code = self.store.get_consent_code(user_id)
        _LOGGER.debug(
            "Selecting user %d: scale index %d, consent code %d", user_id, scale_index, consent_code
        )
        await self.write_bytes(
            uuids.SERVICE_USER_DATA,
            uuids.CHARACTERISTIC_USER_CONTROL_POINT,
            build_consent_command(scale_index, consent_code),
        )

    async def delete_user(self, scale_index: int, consent_code: int) -> None:
        await self.write_bytes(
            uuids.SERVICE_USER_DATA,
            uuids.CHARACTERISTIC_USER_CONTROL_POINT,
            build_consent_command(scale_index, consent_code),
        )
        await self.write_bytes(
            uuids.SERVICE_USER_DATA,
            uuids.CHARACTERISTIC_USER_CONTROL_POINT,
            build_delete_user_data_command(),
        )

    async def write_user_data_to_scale(self) -> None:
        user = self.user
        await self.write_bytes(
            uuids.SERVICE_USER_DATA,
            uuids.CHARACTERISTIC_USER_DATE_OF_BIRTH,
            build_date_of_birth(user.birthday),
        )
        await self.write_bytes(
            uuids.SERVICE_USER_DATA,
            uuids.CHARACTERISTIC_USER_GENDER,
            build_gender(user.gender.value),
        )
        await self.write_bytes(
            uuids.SERVICE_USER_DATA,
            uuids.CHARACTERISTIC_USER_HEIGHT,
            build_height(user.height),
        )
        await self.write_activity_level()
        await self.write_initials()
        await self.write_bytes(
            uuids.SERVICE_USER_DATA,
            uuids.CHARACTERISTIC_CHANGE_INCREMENT,
            build_change_increment(1),
        )

    def get_initials(self, full_name: str) -> str:
        """Three upper-case initials, space padded ("P<index> " without a name)."""
        parts = full_name.split()
        if not parts:
            return f"P{self.store.get_scale_index(self.user.id)} "
        initials = "".join(part[0] for part in parts[:3])
        return initials.ljust(3).upper()

    # Notifications

    async def on_bluetooth_notify(self, characteristic: str, data: bytes) -> None:
        if characteristic == uuids.CHARACTERISTIC_CURRENT_TIME:
            _LOGGER.debug("Device time: %s", ByteReader(data).date_time())
        elif characteristic == uuids.CHARACTERISTIC_WEIGHT_MEASUREMENT:
            self.handle_weight_measurement(data)
        elif characteristic == uuids.CHARACTERISTIC_BODY_COMPOSITION_MEASUREMENT:
            self.handle_body_composition_measurement(data)
        elif characteristic == uuids.CHARACTERISTIC_BATTERY_LEVEL:
            level = uint8(data, 0)
            _LOGGER.debug("Battery level %d%%", level)
            if level <= 10:
                self.send_message(ScaleMessage.LOW_BATTERY, level)
        elif characteristic == uuids.CHARACTERISTIC_MANUFACTURER_NAME_STRING:
            _LOGGER.debug("Manufacturer: %s", ByteReader(data).string())
        elif characteristic == uuids.CHARACTERISTIC_MODEL_NUMBER_STRING:
            _LOGGER.debug("Model number: %s", ByteReader(data).string())
        elif characteristic == uuids.CHARACTERISTIC_USER_CONTROL_POINT:
            self.handle_user_control_point(data)
        elif characteristic == uuids.CHARACTERISTIC_CHANGE_INCREMENT:
            if len(data) >= 4:
                _LOGGER.debug("Change increment %d", uint32_le(data, 0))
            self.resume_machine_state()
        else:
            await super().on_bluetooth_notify(characteristic, data)

    def handle_user_control_point(self, data: bytes) -> None:
        response = parse_user_control_point_response(data)
        if response is None:
            _LOGGER.debug("User control point: non-response [%s]", byte_in_hex(data))
            return

        user = self.user
        opcode = response.request_opcode
        if opcode == UserControlPointOpcode.LIST_ALL_USERS:
            _LOGGER.debug("User list response [%s]", byte_in_hex(data))
        elif opcode == UserControlPointOpcode.REGISTER_NEW_USER:
            if response.success and response.user_index is not None:
                _LOGGER.debug(
                    "Created scale user index %d (user id %d)", response.user_index, user.id
                )
                self.store.store_scale_index(user.id, response.user_index)
                self.resume_machine_state()
            else:
                _LOGGER.error("Could not register new scale user, result %d", response.result)
                self.send_message(ScaleMessage.USER_REGISTRATION_FAILED, response.result)
        elif opcode == UserControlPointOpcode.CONSENT:
            if self.register_new_user:
                _LOGGER.debug("Consent while registering, result %d", response.result)
                self.resume_machine_state()
            elif response.success:
                _LOGGER.debug("User consent accepted")
                self.resume_machine_state()
            elif response.result == UserControlPointResult.USER_NOT_AUTHORIZED:
                _LOGGER.error("Scale rejected the consent code")
                self.request_user_interaction(
                    UserInteractionType.ENTER_CONSENT,
                    (user.id, self.store.get_scale_index(user.id)),
                )
            else:
                _LOGGER.error("Consent failed, result %d", response.result)
                self.send_message(ScaleMessage.USER_REGISTRATION_FAILED, response.result)
        else:
            _LOGGER.error("Unhandled user control point response [%s]", byte_in_hex(data))

    def _user_id_for_scale_index(self, scale_index: int | None) -> int | None:
        if scale_index is None:
            return None
        user_id = self.store.get_user_id_from_scale_index(scale_index)
        _LOGGER.debug("Scale user index %d is user id %d", scale_index, user_id)
        return None if user_id == UNSET else user_id

    def weight_measurement_to_scale_measurement(self, data: bytes) -> ScaleMeasurement:
        frame = decode_weight_measurement(data)
        weight = frame.weight_kg
        _LOGGER.debug("Weight %.3f kg, flags 0x%02x", weight, frame.flags)
        measurement = ScaleMeasurement(
            weight=weight,
            timestamp=frame.timestamp or datetime.now(),
            user_id=self._user_id_for_scale_index(frame.user_index),
        )
        if frame.user_index is not None and self.register_new_user:
            _LOGGER.debug("Reference measurement received, registration finished")
            self.register_new_user = False
            self.resume_machine_state()
        return measurement

    def body_composition_to_scale_measurement(self, data: bytes) -> ScaleMeasurement:
        frame = decode_body_composition_measurement(data)
        if frame.is_multiple_packet:
            _LOGGER.error("Multi-packet body composition measurements are not supported")

        weight = None if frame.weight is None else to_kilograms(frame.weight, frame.is_imperial)
        if weight is None and self._previous_measurement is not None:
            weight = self._previous_measurement.weight or None

        fat = frame.fat_percentage
        measurement = ScaleMeasurement(
            weight=weight or 0.0,
            fat=fat,
            muscle=frame.muscle_percentage,
            impedance=frame.impedance,
            timestamp=frame.timestamp or datetime.now(),
            user_id=self._user_id_for_scale_index(frame.user_index),
        )
        # Masses are stored in kg and water as a percentage of the weight
        if weight:
            if frame.body_water_mass is not None:
                water_kg = to_kilograms(frame.body_water_mass, frame.is_imperial)
                measurement = replace(measurement, water=water_kg / weight * 100.0)
            if frame.soft_lean_mass is not None:
                lean_body_mass = weight - weight * fat / 100.0
                soft_lean_mass = to_kilograms(frame.soft_lean_mass, frame.is_imperial)
                measurement = replace(
                    measurement, lbm=lean_body_mass, bone=lean_body_mass - soft_lean_mass
                )
        _LOGGER.debug("Body composition [%s]", byte_in_hex(data))
        return measurement

    def handle_weight_measurement(self, data: bytes) -> None:
        self.merge_with_previous(self.weight_measurement_to_scale_measurement(data))

    def handle_body_composition_measurement(self, data: bytes) -> None:
        self.merge_with_previous(self.body_composition_to_scale_measurement(data))

    def merge_with_previous(self, measurement: ScaleMeasurement) -> None:
        """Combine a weight frame with the body composition frame that follows.

        Scales send the weight (with user index and timestamp) first and the
        body composition (without them) second. A measurement with a user id
        is held until the next one arrives or the session ends.
        """
        previous = self._previous_measurement
        if previous is None:
            if measurement.user_id is None:
                self.add_scale_measurement(measurement)
            else:
                self._previous_measurement = measurement
            return

        if measurement.user_id is None and previous.user_id is not None:
            self._previous_measurement = None
            self.add_scale_measurement(previous.merge(measurement))
            return

        self.add_scale_measurement(previous)
        if measurement.user_id is None:
            self._previous_measurement = None
            self.add_scale_measurement(measurement)
        else:
            self._previous_measurement = measurement

    async def on_disconnecting(self) -> None:
        if self._previous_measurement is not None:
            previous, self._previous_measurement = self._previous_measurement, None
            self.add_scale_measurement(previous)

    # Vendor user list

    def handle_vendor_specific_user_list(self, data: bytes) -> None:
        """Collect one user list frame: entry (0), end of list (1) or empty (2)."""
        _LOGGER.debug("User list frame [%s]", byte_in_hex(data))
        user = self.user
        status = uint8(data, 0)

        if status == USER_LIST_EMPTY or (status == USER_LIST_END and not self.scale_users):
            _LOGGER.debug("Scale has no users")
            self.store.store_consent_code(user.id, UNSET)
            self.store.store_scale_index(user.id, UNSET)
            self.jump_next_to_step_nr(Step.REGISTER_NEW_SCALE_USER)
            self.resume_machine_state()
            return

        if status == USER_LIST_END:
            for position, scale_user in enumerate(self.scale_users, start=1):
                _LOGGER.debug("Scale user %d: %s", position, scale_user)
            self._resume_or_choose_user()
            return

        try:
            scale_user = self._parse_user_list_entry(data)
        except (ProtocolError, ValueError) as e:
            _LOGGER.warning("Ignoring malformed user list entry [%s]: %s", byte_in_hex(data), e)
            return
        self.scale_users.append(scale_user)
        if len(self.scale_users) == self.vendor_specific_max_user_count():
            self._resume_or_choose_user()

    @staticmethod
    def _parse_user_list_entry(data: bytes) -> ScaleUser:
        reader = ByteReader(data, 1)
        index = reader.uint8()
        raw_initials = reader.raw(3)
        initials = "" if raw_initials == b"\xff\xff\xff" else raw_initials.split(b"\x00", 1)[0].decode(
            "latin-1"
        )
        year = reader.uint16()
        month = reader.uint8()
        day = reader.uint8()
        height = reader.uint8()
        gender = reader.uint8()
        activity_level = reader.uint8()
        return ScaleUser(
            id=index,
            name=initials,
            birthday=date(year, month, day),
            gender=Gender(gender),
            height=float(height),
            activity_level=ActivityLevel(max(activity_level - 1, 0)),
        )

    def _resume_or_choose_user(self) -> None:
        user = self.user
        if (self.store.get_scale_index(user.id) == UNSET
                or self.store.get_consent_code(user.id) == UNSET):
            self.choose_existing_scale_user(self.scale_users)
            return
        self.resume_machine_state()

    def choose_existing_scale_user(self, scale_users: list[ScaleUser]) -> None:
        """Ask the user which scale user they are.

        The event value is a list of (label, scale index) pairs; index -1
        stands for "create a new user on the scale".
        """
        choices: list[tuple[str, int]] = []
        for scale_user in scale_users:
            name = scale_user.name or f"P{scale_user.id:02d}"
            label = (
                f"{name} {scale_user.gender.name.lower()} height:{scale_user.height:g}"
                f" birthday:{scale_user.birthday.isoformat()}"
                f" activity level:{scale_user.activity_level.value + 1}"
            )
            choices.append((label, scale_user.id))
        if len(scale_users) < self.vendor_specific_max_user_count():
            choices.append(("Create new user on scale", UNSET))
        self.request_user_interaction(UserInteractionType.CHOOSE_USER, choices)

    async def select_scale_user_index(self, app_user_id: int, scale_user_index: int) -> None:
        _LOGGER.debug("Selected scale user index %d for user %d", scale_user_index, app_user_id)
        if scale_user_index == UNSET:
            await self._set_state(Step.REGISTER_NEW_SCALE_USER, Step.REGISTER_NEW_SCALE_USER)
            return
        self.store.store_scale_index(app_user_id, scale_user_index)
        if self.store.get_consent_code(app_user_id) == UNSET:
            self.request_user_interaction(
                UserInteractionType.ENTER_CONSENT, (app_user_id, scale_user_index)
            )
        else:
            await self._set_state(Step.SELECT_SCALE_USER, Step.REQUEST_VENDOR_SPECIFIC_USER_LIST)

    async def set_scale_user_consent(self, app_user_id: int, consent_code: int) -> None:
        _LOGGER.debug("Consent code %d entered for user %d", consent_code, app_user_id)
        self.store.store_consent_code(app_user_id, consent_code)
        if consent_code == UNSET:
            await self._set_state(
                Step.REQUEST_VENDOR_SPECIFIC_USER_LIST, Step.REQUEST_VENDOR_SPECIFIC_USER_LIST
            )
        else:
            await self._set_state(Step.SELECT_SCALE_USER, Step.REQUEST_VENDOR_SPECIFIC_USER_LIST)

    async def _set_state(self, requested: Step, minimum: Step) -> None:
        if not self.is_active:
            _LOGGER.warning("Session ended; the choice applies to the next connection")
            return
        async with self._machine.lock:
            if self.step_nr > minimum:
                self.jump_next_to_step_nr(requested)
            self.resume_machine_state()
        await self._machine.wait_idle()
