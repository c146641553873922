"""Test the driver session lifecycle with a minimal driver."""

from __future__ import annotations

import asyncio

import pytest

from bodyscale_ble.config import SessionConfig
from bodyscale_ble.driver import ScaleDriver
from bodyscale_ble.exceptions import BLEConnectionError, BLETimeoutError
from bodyscale_ble.models.enums import BluetoothStatus
from bodyscale_ble.models.measurement import ScaleMeasurement
from bodyscale_ble.store import UNIQUE_NUMBER_KEY, UserProfileStore

SERVICE = "0000ffe0-0000-1000-8000-00805f9b34fb"
CHARACTERISTIC = "0000ffe1-0000-1000-8000-00805f9b34fb"


class PingDriver(ScaleDriver):
    """Subscribes, writes 01, waits for "ok", writes 02, then finishes."""

    driver_id = "ping"

    def __init__(self, *args, fail_step: int | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_step = fail_step
        self.steps: list[int] = []

    def driver_name(self) -> str:
        return "Ping"

    async def on_next_step(self, step_nr: int) -> bool:
        self.steps.append(step_nr)
        if step_nr == self.fail_step:
            raise ValueError("step exploded")
        if step_nr == 0:
            await self.set_notification_on(SERVICE, CHARACTERISTIC)
        elif step_nr == 1:
            await self.write_bytes(SERVICE, CHARACTERISTIC, b"\x01")
            self.stop_machine_state()
        elif step_nr == 2:
            await self.write_bytes(SERVICE, CHARACTERISTIC, b"\x02")
        else:
            return False
        return True

    async def on_bluetooth_notify(self, characteristic: str, data: bytes) -> None:
        if data == b"ok":
            self.resume_machine_state(expected_step=1)
        elif data == b"boom":
            raise ValueError("bad frame")
        elif data:
            self.add_scale_measurement(ScaleMeasurement(weight=data[0] / 10))


def make_driver(transport, recorder, user, **kwargs) -> PingDriver:
    config = kwargs.pop("config", SessionConfig(idle_timeout=5.0))
    return PingDriver(
        transport,
        user=user,
        config=config,
        on_measurement=recorder.on_measurement,
        on_status=recorder.on_status,
        **kwargs,
    )


class TestSession:
    """Test connect, stepping and disconnect."""

    @pytest.mark.asyncio
    async def test_steps_wait_for_notification(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user)
        await driver.connect()
        await driver.settle()

        assert driver.steps == [0, 1]
        assert transport.written_to(CHARACTERISTIC) == [b"\x01"]
        assert recorder.statuses == [BluetoothStatus.CONNECTION_ESTABLISHED]

        transport.notify(CHARACTERISTIC, b"ok")
        await driver.settle()
        assert driver.steps == [0, 1, 2, 3]
        assert transport.written_to(CHARACTERISTIC) == [b"\x01", b"\x02"]

        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_late_completion_is_ignored(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user)
        await driver.connect()
        transport.notify(CHARACTERISTIC, b"ok")
        await driver.settle()
        transport.notify(CHARACTERISTIC, b"ok")
        await driver.settle()

        assert driver.steps == [0, 1, 2, 3]
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_measurement_gets_selected_user(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user)
        await driver.connect()
        transport.notify(CHARACTERISTIC, bytes([200]))
        transport.notify(CHARACTERISTIC, bytes([0]))
        await driver.settle()

        assert len(recorder.measurements) == 1
        assert recorder.measurements[0].weight == 20.0
        assert recorder.measurements[0].user_id == user.id
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_handler_error_keeps_session(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user)
        await driver.connect()
        transport.notify(CHARACTERISTIC, b"boom")
        transport.notify(CHARACTERISTIC, b"ok")
        await driver.settle()

        assert driver.is_active
        assert driver.steps == [0, 1, 2, 3]
        await driver.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user)
        await driver.connect()
        await driver.disconnect()
        await driver.disconnect()

        assert transport.disconnect_calls == 1
        assert recorder.statuses.count(BluetoothStatus.CONNECTION_DISCONNECT) == 1
        assert not driver.is_active

    @pytest.mark.asyncio
    async def test_callbacks_cleared_after_disconnect(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user)
        await driver.connect()
        await driver.disconnect()
        events = len(recorder.events)

        driver.set_bluetooth_status(BluetoothStatus.INIT_PROCESS)
        assert len(recorder.events) == events

    @pytest.mark.asyncio
    async def test_async_context_manager(self, transport, recorder, user):
        async with make_driver(transport, recorder, user) as driver:
            assert driver.is_active
            assert transport.connected
        assert not transport.connected


class TestFailures:
    """Test connection failures, link loss and step errors."""

    @pytest.mark.asyncio
    async def test_connect_timeout_reports_no_device(self, transport, recorder, user):
        transport.connect_error = BLETimeoutError("not found")
        driver = make_driver(transport, recorder, user)

        with pytest.raises(BLETimeoutError):
            await driver.connect()

        assert recorder.statuses == [
            BluetoothStatus.NO_DEVICE_FOUND,
            BluetoothStatus.CONNECTION_DISCONNECT,
        ]
        assert not driver.is_active

    @pytest.mark.asyncio
    async def test_connect_error_reports_connection_lost(self, transport, recorder, user):
        transport.connect_error = BLEConnectionError("refused")
        driver = make_driver(transport, recorder, user)

        with pytest.raises(BLEConnectionError):
            await driver.connect()

        assert recorder.statuses[0] == BluetoothStatus.CONNECTION_LOST
        assert recorder.events[0].value == "refused"

    @pytest.mark.asyncio
    async def test_link_lost(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user)
        await driver.connect()
        await driver.settle()

        transport.drop_link()
        await asyncio.wait_for(driver.wait_closed(), 1.0)

        assert recorder.statuses[-2:] == [
            BluetoothStatus.CONNECTION_LOST,
            BluetoothStatus.CONNECTION_DISCONNECT,
        ]

    @pytest.mark.asyncio
    async def test_step_error_reports_unexpected_error(self, transport, recorder, user):
        driver = make_driver(transport, recorder, user, fail_step=0)
        await driver.connect()
        await asyncio.wait_for(driver.wait_closed(), 1.0)

        assert BluetoothStatus.UNEXPECTED_ERROR in recorder.statuses
        error = next(
            event for event in recorder.events
            if event.status == BluetoothStatus.UNEXPECTED_ERROR
        )
        assert error.value == "step exploded"
        assert transport.disconnect_calls == 1


class TestIdleTimeout:
    """Test the idle watchdog on a live session."""

    @pytest.mark.asyncio
    async def test_quiet_session_disconnects_once(self, transport, recorder, user):
        driver = make_driver(
            transport, recorder, user, config=SessionConfig(idle_timeout=0.05)
        )
        await driver.connect()
        await asyncio.wait_for(driver.wait_closed(), 1.0)
        await asyncio.sleep(0.1)

        assert transport.disconnect_calls == 1
        assert recorder.statuses.count(BluetoothStatus.CONNECTION_DISCONNECT) == 1

    @pytest.mark.asyncio
    async def test_notifications_keep_session_alive(self, transport, recorder, user):
        driver = make_driver(
            transport, recorder, user, config=SessionConfig(idle_timeout=0.1)
        )
        await driver.connect()
        for _ in range(4):
            await asyncio.sleep(0.05)
            transport.notify(CHARACTERISTIC, b"")
        await driver.settle()

        assert driver.is_active
        await driver.disconnect()


class TestUniqueNumber:
    """Test the per-installation number mixed into vendor user ids."""

    def test_default_base_without_store(self, transport, user):
        driver = PingDriver(transport, user=user)
        assert driver.get_unique_number() == 99 + user.id

    def test_store_base(self, transport, user):
        store = UserProfileStore([user])
        store.put_int(UNIQUE_NUMBER_KEY, 1234)
        driver = PingDriver(transport, store=store)
        assert driver.get_unique_number() == 1234 + user.id

    def test_store_creates_base_once(self, transport, user):
        store = UserProfileStore([user])
        first = PingDriver(transport, store=store).get_unique_number()
        second = PingDriver(transport, store=store).get_unique_number()

        assert first == second
        assert 0 <= store.get_int(UNIQUE_NUMBER_KEY) <= 0xFFFF - 100

    def test_config_base_wins(self, transport, user):
        store = UserProfileStore([user])
        store.put_int(UNIQUE_NUMBER_KEY, 1234)
        driver = PingDriver(transport, store=store, config=SessionConfig(unique_base=500))
        assert driver.get_unique_number() == 500 + user.id
