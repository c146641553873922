"""Driver base classes.

A driver owns one scale session. It sequences setup through a StepMachine,
receives notifications through a NotificationDispatcher, decodes vendor
frames and hands finished ScaleMeasurement records to a callback.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from .config import SessionConfig
from .exceptions import BLEConnectionError, BLETimeoutError
from .machine import IdleWatchdog, StepMachine
from .models.enums import BluetoothStatus, ScaleMessage, UserInteractionType
from .models.events import StatusEvent
from .models.measurement import ScaleMeasurement
from .models.user import ScaleUser
from .notifications import NotificationDispatcher
from .protocol.codec import byte_in_hex
from .protocol.uuids import pretty_print
from .store import DEFAULT_UNIQUE_BASE, UserProfileStore
from .transport.base import Transport

_LOGGER = logging.getLogger(__name__)

MeasurementCallback = Callable[[ScaleMeasurement], None]
StatusCallback = Callable[[StatusEvent], None]


class ScaleDriver(ABC):
    """Base class of all GATT scale drivers.

    Subclasses implement driver_name(), on_next_step() and
    on_bluetooth_notify(). Steps and notification handlers never run
    concurrently.
    """

    driver_id: str = ""

    def __init__(
            self,
            transport: Transport,
            *,
            device_name: str = "",
            user: ScaleUser | None = None,
            store: UserProfileStore | None = None,
            config: SessionConfig | None = None,
            on_measurement: MeasurementCallback | None = None,
            on_status: StatusCallback | None = None,
    ):
        """Initialize driver.

        Args:
            transport: Connection to the scale
            device_name: Advertised name of the scale
            user: Selected user; defaults to the store's selected user
            store: Persisted user profiles and scale credentials
            config: Session tunables
            on_measurement: Receives every emitted measurement
            on_status: Receives status changes and user-facing messages
        """
        self.transport = transport
        self.device_name = device_name
        self._persistent_store = store is not None
        if store is None:
            store = UserProfileStore(users=[user] if user is not None else ())
        elif user is not None and store.get_user(user.id) is None:
            store.add_user(user)
        self.store = store
        self._user = user
        self.config = config or SessionConfig()
        self._on_measurement = on_measurement
        self._on_status = on_status

        name = type(self).__name__
        self._machine = StepMachine(
            self.on_next_step,
            on_sequence_end=self._on_sequence_end,
            on_error=self._on_step_error,
            name=name,
        )
        self._watchdog = IdleWatchdog(self.config.idle_timeout, self.disconnect, name=name)
        self._dispatcher = NotificationDispatcher(self._handle_notification, name=name)
        self._session_active = False
        self._closed = asyncio.Event()
        self._closed.set()
        self._background: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> ScaleDriver:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    @abstractmethod
    def driver_name(self) -> str:
        """Human-readable driver name."""

    @abstractmethod
    async def on_next_step(self, step_nr: int) -> bool:
        """Run one setup step.

        Returns:
            False when there is no such step and the sequence ends
        """

    async def on_bluetooth_notify(self, characteristic: str, data: bytes) -> None:
        """Handle a notification or read result."""
        _LOGGER.debug(
            "Unhandled data from %s: [%s]", pretty_print(characteristic), byte_in_hex(data)
        )

    async def on_disconnecting(self) -> None:
        """Hook run by disconnect() while the measurement callback is still set."""

    @property
    def user(self) -> ScaleUser:
        """Selected local user.

        Raises:
            RuntimeError: If no user is configured
        """
        user = self._user or self.store.selected_user
        if user is None:
            raise RuntimeError("No user selected")
        return user

    @property
    def is_active(self) -> bool:
        return self._session_active

    def set_callbacks(
            self,
            on_measurement: MeasurementCallback | None = None,
            on_status: StatusCallback | None = None,
    ) -> None:
        """Register callbacks again after a disconnect cleared them."""
        self._on_measurement = on_measurement
        self._on_status = on_status

    # Step machine

    @property
    def step_nr(self) -> int:
        return self._machine.step_nr

    def stop_machine_state(self) -> None:
        self._machine.stop()

    def resume_machine_state(self, expected_step: int | None = None) -> bool:
        return self._machine.resume(expected_step)

    def jump_next_to_step_nr(self, step_nr: int, expected_step: int | None = None) -> bool:
        return self._machine.jump_next_to_step(step_nr, expected_step)

    def jump_back_one_step(self) -> None:
        self._machine.jump_back_one_step()

    # GATT operations

    def have_characteristic(self, service: str, characteristic: str) -> bool:
        return self.transport.has_characteristic(service, characteristic)

    async def write_bytes(
            self,
            service: str,
            characteristic: str,
            data: bytes,
            response: bool = True,
    ) -> None:
        _LOGGER.debug(
            "Write to %s: [%s]", pretty_print(characteristic), byte_in_hex(data)
        )
        await self.transport.write_characteristic(service, characteristic, bytes(data), response)

    async def read_bytes(self, service: str, characteristic: str) -> bytes:
        """Read a characteristic; the value is also passed to on_bluetooth_notify()."""
        value = await self.transport.read_characteristic(service, characteristic)
        _LOGGER.debug("Read from %s: [%s]", pretty_print(characteristic), byte_in_hex(value))
        self._watchdog.reset()
        await self.on_bluetooth_notify(characteristic, value)
        return value

    async def set_notification_on(self, service: str, characteristic: str) -> bool:
        """Subscribe to notifications.

        Returns:
            False if the device lacks the characteristic
        """
        return await self._subscribe(service, characteristic, indicate=False)

    async def set_indication_on(self, service: str, characteristic: str) -> bool:
        return await self._subscribe(service, characteristic, indicate=True)

    async def _subscribe(self, service: str, characteristic: str, indicate: bool) -> bool:
        if not self.have_characteristic(service, characteristic):
            _LOGGER.debug(
                "%s has no characteristic %s", self.driver_name(), pretty_print(characteristic)
            )
            return False
        await self.transport.start_notify(service, characteristic, self._dispatcher, indicate)
        return True

    # Results and status

    def add_scale_measurement(self, measurement: ScaleMeasurement) -> None:
        """Hand a measurement to the measurement callback.

        Measurements without a weight are dropped.
        """
        if not measurement.has_weight:
            _LOGGER.warning("Dropping measurement without weight: %s", measurement)
            return
        if measurement.user_id is None:
            user = self._user or self.store.selected_user
            if user is not None:
                measurement = measurement.with_user(user.id)
        _LOGGER.info("%s: measurement %s", self.driver_name(), measurement.to_dict())
        if self._on_measurement is not None:
            self._on_measurement(measurement)

    def set_bluetooth_status(self, status: BluetoothStatus, value: object = None) -> None:
        self._emit(StatusEvent(status, value=value))

    def send_message(self, message: ScaleMessage, value: object = None) -> None:
        _LOGGER.debug("Scale message %s (%s)", message.name, value)
        self._emit(StatusEvent(BluetoothStatus.SCALE_MESSAGE, message=message, value=value))

    def request_user_interaction(self, interaction: UserInteractionType, value: object) -> None:
        _LOGGER.debug("User interaction %s required", interaction.name)
        self._emit(StatusEvent(
            BluetoothStatus.USER_INTERACTION_REQUIRED, value=value, interaction=interaction
        ))

    def _emit(self, event: StatusEvent) -> None:
        if self._on_status is not None:
            self._on_status(event)

    def get_unique_number(self) -> int:
        """Per-installation number plus the local user id."""
        base = self.config.unique_base
        if base is None:
            base = self.store.get_unique_base() if self._persistent_store else DEFAULT_UNIQUE_BASE
        return base + self.user.id

    # User interaction feedback

    async def select_scale_user_index(self, app_user_id: int, scale_user_index: int) -> None:
        """Answer a CHOOSE_USER request (-1 means create a new scale user)."""
        _LOGGER.debug("%s does not use scale user selection", self.driver_name())

    async def set_scale_user_consent(self, app_user_id: int, consent_code: int) -> None:
        """Answer an ENTER_CONSENT request."""
        _LOGGER.debug("%s does not use consent codes", self.driver_name())

    # Session lifecycle

    def _begin_session(self) -> None:
        self._machine.reset()
        self._session_active = True
        self._closed.clear()
        self._dispatcher.start()

    async def connect(self) -> None:
        """Connect and start the step sequence.

        Raises:
            BLEConnectionError: If the connection cannot be established
        """
        if self._session_active:
            return
        self._begin_session()
        _LOGGER.info("%s: connecting", self.driver_name())
        try:
            await self.transport.connect()
        except BLEConnectionError as e:
            _LOGGER.warning("%s: connection failed: %s", self.driver_name(), e)
            status = (
                BluetoothStatus.NO_DEVICE_FOUND
                if isinstance(e, BLETimeoutError)
                else BluetoothStatus.CONNECTION_LOST
            )
            self.set_bluetooth_status(status, str(e))
            await self.disconnect()
            raise
        self.transport.set_disconnected_callback(self._on_link_lost)
        self.set_bluetooth_status(BluetoothStatus.CONNECTION_ESTABLISHED)
        self._watchdog.reset()
        self._machine.start()

    async def disconnect(self) -> None:
        """End the session. Safe to call more than once."""
        if not self._session_active:
            return
        self._session_active = False
        self._watchdog.cancel()
        self._machine.cancel()
        try:
            await self.on_disconnecting()
        finally:
            await self._dispatcher.stop()
            self.transport.set_disconnected_callback(None)
            try:
                await self.transport.stop_scan()
                await self.transport.disconnect()
            except BLEConnectionError as e:
                _LOGGER.warning("%s: error while disconnecting: %s", self.driver_name(), e)
            _LOGGER.info("%s: disconnected", self.driver_name())
            self.set_bluetooth_status(BluetoothStatus.CONNECTION_DISCONNECT)
            self._on_measurement = None
            self._on_status = None
            self._closed.set()

    async def wait_closed(self) -> None:
        """Wait until the session has ended."""
        await self._closed.wait()

    async def settle(self) -> None:
        """Wait until queued notifications and pending steps are processed."""
        while True:
            await self._dispatcher.join()
            await self._machine.wait_idle()
            if not self._machine.running and self._dispatcher.idle:
                return

    def _schedule_disconnect(self) -> None:
        task = asyncio.get_running_loop().create_task(self.disconnect())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_link_lost(self) -> None:
        if not self._session_active:
            return
        _LOGGER.warning("%s: connection lost", self.driver_name())
        self.set_bluetooth_status(BluetoothStatus.CONNECTION_LOST)
        self._schedule_disconnect()

    def _on_sequence_end(self) -> None:
        _LOGGER.debug(
            "%s: no more steps, disconnecting after %.0fs idle",
            self.driver_name(), self.config.idle_timeout,
        )
        self._watchdog.reset()

    def _on_step_error(self, error: Exception) -> None:
        if isinstance(error, BLEConnectionError):
            self.set_bluetooth_status(BluetoothStatus.CONNECTION_LOST, str(error))
        else:
            self.set_bluetooth_status(BluetoothStatus.UNEXPECTED_ERROR, str(error))
        self._schedule_disconnect()

    async def _handle_notification(self, characteristic: str, data: bytes) -> None:
        if not self._session_active:
            return
        self._watchdog.reset()
        _LOGGER.debug("Notify from %s: [%s]", pretty_print(characteristic), byte_in_hex(data))
        async with self._machine.lock:
            await self.on_bluetooth_notify(characteristic, data)
        await self._machine.wait_idle()


class BroadcastScaleDriver(ScaleDriver):
    """Base class for scales that only advertise their readings.

    connect() starts a scan instead of a GATT connection. Advertisements of
    the scale are delivered in order to on_advertisement().
    """

    async def on_next_step(self, step_nr: int) -> bool:
        return False

    @abstractmethod
    async def on_advertisement(self, manufacturer_data: dict[int, bytes]) -> None:
        """Handle the manufacturer data of one advertisement."""

    async def connect(self) -> None:
        """Start listening for advertisements.

        Raises:
            BLEConnectionError: If scanning cannot start
        """
        if self._session_active:
            return
        self._begin_session()
        _LOGGER.info("%s: waiting for advertisements", self.driver_name())
        try:
            await self.transport.start_scan(self._on_scan_result)
        except BLEConnectionError as e:
            self.set_bluetooth_status(BluetoothStatus.UNEXPECTED_ERROR, str(e))
            await self.disconnect()
            raise
        self.set_bluetooth_status(BluetoothStatus.RETRIEVE_SCALE_DATA)
        self._watchdog.reset()

    def _on_scan_result(
            self, address: str, name: str | None, manufacturer_data: dict[int, bytes]
    ) -> None:
        self._dispatcher(address, manufacturer_data)

    async def _handle_notification(self, address: str, manufacturer_data: dict[int, bytes]) -> None:
        if not self._session_active:
            return
        self._watchdog.reset()
        async with self._machine.lock:
            await self.on_advertisement(manufacturer_data)
