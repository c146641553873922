"""Test the Bluetooth SIG weight scale profile driver."""

from __future__ import annotations

from datetime import datetime

import pytest

from bodyscale_ble.drivers.standard_weight_profile import StandardWeightProfileDriver
from bodyscale_ble.models.enums import BluetoothStatus, ScaleMessage, UserInteractionType
from bodyscale_ble.models.measurement import ScaleMeasurement
from bodyscale_ble.protocol import uuids
from bodyscale_ble.protocol.codec import encode_date_time
from bodyscale_ble.protocol.weight_profile import LB_TO_KG, BodyCompositionFlag
from bodyscale_ble.store import UserProfileStore

CONSENT_CODE = 1234
SCALE_INDEX = 3


def weight_frame(raw: int, scale_index: int | None = None, when: datetime | None = None) -> bytes:
    flags = 0
    body = bytearray(raw.to_bytes(2, "little"))
    if when is not None:
        flags |= 0x02
        body += encode_date_time(when)
    if scale_index is not None:
        flags |= 0x04
        body.append(scale_index)
    return bytes([flags]) + bytes(body)


def body_composition_frame(fat_raw: int, water_raw: int) -> bytes:
    return (
        (0x0100).to_bytes(2, "little")
        + fat_raw.to_bytes(2, "little")
        + water_raw.to_bytes(2, "little")
    )


@pytest.fixture
def registered_store(user) -> UserProfileStore:
    store = UserProfileStore([user])
    store.store_consent_code(user.id, CONSENT_CODE)
    store.store_scale_index(user.id, SCALE_INDEX)
    return store


async def start_driver(transport, recorder, store) -> StandardWeightProfileDriver:
    driver = StandardWeightProfileDriver(
        transport,
        store=store,
        on_measurement=recorder.on_measurement,
        on_status=recorder.on_status,
    )
    await driver.connect()
    await driver.settle()
    return driver


class TestRegisteredUser:
    """Test a session for a user the scale already knows."""

    @pytest.mark.asyncio
    async def test_setup_sends_consent(self, transport, recorder, registered_store):
        transport.reads[uuids.CHARACTERISTIC_BATTERY_LEVEL] = b"\x64"
        driver = await start_driver(transport, recorder, registered_store)

        assert transport.written_to(uuids.CHARACTERISTIC_USER_CONTROL_POINT) == [
            bytes([0x02, SCALE_INDEX, 0xD2, 0x04])
        ]
        assert len(transport.written_to(uuids.CHARACTERISTIC_CURRENT_TIME)) == 1
        assert transport.subscriptions[uuids.CHARACTERISTIC_WEIGHT_MEASUREMENT][1] is True
        assert transport.subscriptions[uuids.CHARACTERISTIC_USER_CONTROL_POINT][1] is True
        assert transport.subscriptions[uuids.CHARACTERISTIC_BATTERY_LEVEL][1] is False

        transport.notify(uuids.CHARACTERISTIC_USER_CONTROL_POINT, bytes([0x20, 0x02, 0x01]))
        await driver.settle()
        assert driver.step_nr == 16
        assert recorder.messages == []
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_weight_and_body_composition_merge(self, transport, recorder, registered_store, user):
        transport.reads[uuids.CHARACTERISTIC_BATTERY_LEVEL] = b"\x64"
        driver = await start_driver(transport, recorder, registered_store)
        when = datetime(2024, 3, 1, 8, 0, 0)

        transport.notify(
            uuids.CHARACTERISTIC_WEIGHT_MEASUREMENT, weight_frame(15000, SCALE_INDEX, when)
        )
        await driver.settle()
        assert recorder.measurements == []

        transport.notify(
            uuids.CHARACTERISTIC_BODY_COMPOSITION_MEASUREMENT, body_composition_frame(215, 8000)
        )
        await driver.settle()

        assert len(recorder.measurements) == 1
        measurement = recorder.measurements[0]
        assert measurement.weight == pytest.approx(75.0)
        assert measurement.fat == pytest.approx(21.5)
        assert measurement.water == pytest.approx(40.0 / 75.0 * 100.0)
        assert measurement.timestamp == when
        assert measurement.user_id == user.id
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_held_weight_flushed_on_disconnect(self, transport, recorder, registered_store):
        transport.reads[uuids.CHARACTERISTIC_BATTERY_LEVEL] = b"\x64"
        driver = await start_driver(transport, recorder, registered_store)

        transport.notify(uuids.CHARACTERISTIC_WEIGHT_MEASUREMENT, weight_frame(14000, SCALE_INDEX))
        await driver.settle()
        assert recorder.measurements == []

        await driver.disconnect()
        assert [m.weight for m in recorder.measurements] == [pytest.approx(70.0)]

    @pytest.mark.asyncio
    async def test_low_battery(self, transport, recorder, registered_store):
        transport.reads[uuids.CHARACTERISTIC_BATTERY_LEVEL] = b"\x05"
        driver = await start_driver(transport, recorder, registered_store)

        low = [e for e in recorder.events if e.message == ScaleMessage.LOW_BATTERY]
        assert len(low) == 1
        assert low[0].value == 5
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_rejected_consent_asks_for_code(self, transport, recorder, registered_store, user):
        transport.reads[uuids.CHARACTERISTIC_BATTERY_LEVEL] = b"\x64"
        driver = await start_driver(transport, recorder, registered_store)

        transport.notify(uuids.CHARACTERISTIC_USER_CONTROL_POINT, bytes([0x20, 0x02, 0x05]))
        await driver.settle()

        event = recorder.events[-1]
        assert event.status == BluetoothStatus.USER_INTERACTION_REQUIRED
        assert event.interaction == UserInteractionType.ENTER_CONSENT
        assert event.value == (user.id, SCALE_INDEX)

        await driver.set_scale_user_consent(user.id, 4321)
        assert registered_store.get_consent_code(user.id) == 4321
        assert transport.written_to(uuids.CHARACTERISTIC_USER_CONTROL_POINT)[-1] == bytes(
            [0x02, SCALE_INDEX, 0xE1, 0x10]
        )
        await driver.disconnect()


class TestMeasurementDecoding:
    """Test frame to measurement conversion."""

    @pytest.mark.asyncio
    async def test_weight_without_user_is_emitted_at_once(self, transport, recorder, user):
        driver = StandardWeightProfileDriver(
            transport, user=user, on_measurement=recorder.on_measurement
        )
        driver.handle_weight_measurement(weight_frame(7000))

        assert len(recorder.measurements) == 1
        assert recorder.measurements[0].weight == pytest.approx(35.0)
        # Filled in with the selected user
        assert recorder.measurements[0].user_id == user.id

    def test_body_composition_uses_previous_weight(self, transport, user):
        driver = StandardWeightProfileDriver(transport, user=user)
        driver._previous_measurement = ScaleMeasurement(weight=80.0, user_id=1)

        measurement = driver.body_composition_to_scale_measurement(
            body_composition_frame(250, 8000)
        )
        assert measurement.weight == 80.0
        assert measurement.fat == pytest.approx(25.0)
        assert measurement.water == pytest.approx(50.0)

    def test_imperial_body_composition_in_kilograms(self, transport, user):
        flags = (
            BodyCompositionFlag.IMPERIAL
            | BodyCompositionFlag.SOFT_LEAN_MASS
            | BodyCompositionFlag.BODY_WATER_MASS
            | BodyCompositionFlag.WEIGHT
        )
        data = (
            int(flags).to_bytes(2, "little")
            + (200).to_bytes(2, "little")
            + (10000).to_bytes(2, "little")
            + (8000).to_bytes(2, "little")
            + (16000).to_bytes(2, "little")
        )
        driver = StandardWeightProfileDriver(transport, user=user)
        measurement = driver.body_composition_to_scale_measurement(data)

        weight = 160.0 * LB_TO_KG
        assert measurement.weight == pytest.approx(weight)
        # Water mass is reported as a share of the weight
        assert measurement.water == pytest.approx(50.0)
        assert measurement.lbm == pytest.approx(weight * 0.8)
        assert measurement.bone == pytest.approx(weight * 0.8 - 100.0 * LB_TO_KG)

    def test_imperial_weight_in_kilograms(self, transport, user):
        driver = StandardWeightProfileDriver(transport, user=user)
        measurement = driver.weight_measurement_to_scale_measurement(
            bytes([0x01]) + (16000).to_bytes(2, "little")
        )
        assert measurement.weight == pytest.approx(160.0 * LB_TO_KG)

    def test_unknown_scale_index_has_no_user(self, transport, user):
        driver = StandardWeightProfileDriver(transport, user=user)
        measurement = driver.weight_measurement_to_scale_measurement(weight_frame(7000, 9))
        assert measurement.user_id is None

    @pytest.mark.asyncio
    async def test_two_users_are_not_merged(self, transport, recorder, user, registered_store):
        registered_store.store_scale_index(2, 4)
        driver = StandardWeightProfileDriver(
            transport, store=registered_store, on_measurement=recorder.on_measurement
        )
        driver.handle_weight_measurement(weight_frame(14000, SCALE_INDEX))
        driver.handle_weight_measurement(weight_frame(12000, 4))

        assert [(m.weight, m.user_id) for m in recorder.measurements] == [
            (pytest.approx(70.0), user.id)
        ]
        await driver.on_disconnecting()
        assert recorder.measurements[-1].user_id == 2


def test_initials(transport, user):
    driver = StandardWeightProfileDriver(transport, user=user)
    assert driver.get_initials("Alex Example") == "AE "
    assert driver.get_initials("anna berta carla dora") == "ABC"
    assert driver.get_initials("") == "P-1 "
