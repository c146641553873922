"""Test Beurer BF600 registration and user list handling."""

from __future__ import annotations

import pytest

from bodyscale_ble.drivers.beurer_bf600 import (
    CHARACTERISTIC_ACTIVITY_LEVEL,
    CHARACTERISTIC_INITIALS,
    CHARACTERISTIC_TAKE_MEASUREMENT,
    CHARACTERISTIC_USER_LIST,
    BeurerBF600Driver,
)
from bodyscale_ble.models.enums import ScaleMessage, UserInteractionType
from bodyscale_ble.protocol import uuids
from bodyscale_ble.store import UNSET, UserProfileStore


@pytest.fixture
def store(user) -> UserProfileStore:
    return UserProfileStore([user])


async def start_driver(transport, recorder, store) -> BeurerBF600Driver:
    transport.reads[uuids.CHARACTERISTIC_BATTERY_LEVEL] = b"\x64"
    transport.reads[uuids.CHARACTERISTIC_MANUFACTURER_NAME_STRING] = b"Beurer"
    transport.reads[uuids.CHARACTERISTIC_MODEL_NUMBER_STRING] = b"BF600"
    driver = BeurerBF600Driver(
        transport,
        device_name="BF600",
        store=store,
        on_measurement=recorder.on_measurement,
        on_status=recorder.on_status,
    )
    await driver.connect()
    await driver.settle()
    return driver


def user_list_entry(index: int, initials: bytes, activity_level: int) -> bytes:
    # status, index, initials, year LE, month, day, height, gender, activity
    return bytes([0x00, index]) + initials + bytes([0xC6, 0x07, 5, 17, 180, 0, activity_level])


class TestRegistration:
    """Test registering a new user on an empty scale."""

    @pytest.mark.asyncio
    async def test_empty_scale_registers_user(self, transport, recorder, store, user):
        driver = await start_driver(transport, recorder, store)
        assert transport.written_to(CHARACTERISTIC_USER_LIST) == [b"\x00"]

        transport.notify(CHARACTERISTIC_USER_LIST, b"\x02")
        await driver.settle()

        register = transport.written_to(uuids.CHARACTERISTIC_USER_CONTROL_POINT)
        assert len(register) == 1
        assert register[0][0] == 0x01
        consent_code = int.from_bytes(register[0][1:3], "little")
        assert 0 <= consent_code < 10000
        assert store.get_consent_code(user.id) == consent_code

        transport.notify(uuids.CHARACTERISTIC_USER_CONTROL_POINT, bytes([0x20, 0x01, 0x01, 0x05]))
        await driver.settle()
        assert store.get_scale_index(user.id) == 5
        assert transport.written_to(uuids.CHARACTERISTIC_USER_CONTROL_POINT)[-1] == bytes(
            [0x02, 0x05]
        ) + consent_code.to_bytes(2, "little")

        transport.notify(uuids.CHARACTERISTIC_USER_CONTROL_POINT, bytes([0x20, 0x02, 0x01]))
        await driver.settle()

        characteristics = [char for char, _data, _response in transport.writes]
        measurement_request = characteristics.index(CHARACTERISTIC_TAKE_MEASUREMENT)
        for written in (
                uuids.CHARACTERISTIC_USER_DATE_OF_BIRTH,
                uuids.CHARACTERISTIC_USER_GENDER,
                uuids.CHARACTERISTIC_USER_HEIGHT,
                CHARACTERISTIC_ACTIVITY_LEVEL,
                uuids.CHARACTERISTIC_CHANGE_INCREMENT,
        ):
            assert characteristics.index(written) < measurement_request
        assert transport.written_to(uuids.CHARACTERISTIC_USER_DATE_OF_BIRTH) == [
            bytes([0xC6, 0x07, 5, 17])
        ]
        assert transport.written_to(uuids.CHARACTERISTIC_USER_HEIGHT) == [bytes([180, 0])]
        assert transport.written_to(CHARACTERISTIC_ACTIVITY_LEVEL) == [bytes([3])]
        assert transport.written_to(CHARACTERISTIC_INITIALS) == [b"AE "]
        assert transport.written_to(CHARACTERISTIC_TAKE_MEASUREMENT) == [b"\x00"]
        assert ScaleMessage.STEP_ON_SCALE_FOR_REFERENCE in recorder.messages

        # Reference measurement ends the registration
        transport.notify(
            uuids.CHARACTERISTIC_WEIGHT_MEASUREMENT, bytes([0x04]) + (7000).to_bytes(2, "little") + b"\x05"
        )
        await driver.settle()
        assert not driver.register_new_user
        assert recorder.measurements == []

        await driver.disconnect()
        assert len(recorder.measurements) == 1
        assert recorder.measurements[0].weight == pytest.approx(35.0)
        assert recorder.measurements[0].user_id == user.id

    @pytest.mark.asyncio
    async def test_registration_failure(self, transport, recorder, store):
        driver = await start_driver(transport, recorder, store)
        transport.notify(CHARACTERISTIC_USER_LIST, b"\x02")
        await driver.settle()

        transport.notify(uuids.CHARACTERISTIC_USER_CONTROL_POINT, bytes([0x20, 0x01, 0x04]))
        await driver.settle()

        assert ScaleMessage.USER_REGISTRATION_FAILED in recorder.messages
        await driver.disconnect()


class TestUserList:
    """Test choosing an existing scale user."""

    @pytest.mark.asyncio
    async def test_unknown_user_chooses_from_list(self, transport, recorder, store, user):
        driver = await start_driver(transport, recorder, store)

        transport.notify(CHARACTERISTIC_USER_LIST, user_list_entry(2, b"ABC", 3))
        transport.notify(CHARACTERISTIC_USER_LIST, b"\x01")
        await driver.settle()

        event = recorder.events[-1]
        assert event.interaction == UserInteractionType.CHOOSE_USER
        assert event.value == [
            ("ABC male height:180 birthday:1990-05-17 activity level:3", 2),
            ("Create new user on scale", UNSET),
        ]

        await driver.select_scale_user_index(user.id, 2)
        assert store.get_scale_index(user.id) == 2
        assert recorder.events[-1].interaction == UserInteractionType.ENTER_CONSENT
        assert recorder.events[-1].value == (user.id, 2)

        await driver.set_scale_user_consent(user.id, 1234)
        assert transport.written_to(uuids.CHARACTERISTIC_USER_CONTROL_POINT) == [
            bytes([0x02, 0x02, 0xD2, 0x04])
        ]
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_known_user_continues(self, transport, recorder, store, user):
        store.store_consent_code(user.id, 1234)
        store.store_scale_index(user.id, 2)
        driver = await start_driver(transport, recorder, store)

        transport.notify(CHARACTERISTIC_USER_LIST, user_list_entry(2, b"ABC", 3))
        transport.notify(CHARACTERISTIC_USER_LIST, b"\x01")
        await driver.settle()

        assert not any(event.interaction is not None for event in recorder.events)
        assert transport.written_to(uuids.CHARACTERISTIC_USER_CONTROL_POINT) == [
            bytes([0x02, 0x02, 0xD2, 0x04])
        ]
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_malformed_entry_is_skipped(self, transport, recorder, store):
        driver = await start_driver(transport, recorder, store)

        transport.notify(CHARACTERISTIC_USER_LIST, bytes([0x00, 0x01, 0x41]))
        await driver.settle()

        assert driver.scale_users == []
        assert driver.is_active
        await driver.disconnect()


def test_driver_name(transport, user):
    assert BeurerBF600Driver(transport, device_name="BF850", user=user).driver_name() == "Beurer BF850"
