"""Shared fixtures: an in-memory transport standing in for a BLE scale."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date

import pytest

from bodyscale_ble.models.enums import ActivityLevel, Gender
from bodyscale_ble.models.events import StatusEvent
from bodyscale_ble.models.measurement import ScaleMeasurement
from bodyscale_ble.models.user import ScaleUser
from bodyscale_ble.transport.base import AdvertisementCallback, NotificationCallback

SCALE_ADDRESS = "AA:BB:CC:DD:EE:FF"


class FakeTransport:
    """Records every GATT operation and lets tests play the scale's side."""

    def __init__(
            self,
            reads: dict[str, bytes] | None = None,
            missing: set[str] | None = None,
    ):
        """Initialize fake.

        Args:
            reads: Value returned per characteristic (default: b"")
            missing: Characteristics the fake device does not have
        """
        self.reads = dict(reads or {})
        self.missing = set(missing or ())
        self.connected = False
        self.connect_error: Exception | None = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.writes: list[tuple[str, bytes, bool]] = []
        self.read_calls: list[str] = []
        self.subscriptions: dict[str, tuple[NotificationCallback, bool]] = {}
        self.scan_callback: AdvertisementCallback | None = None
        self.scans_started = 0
        self.disconnected_callback: Callable[[], None] | None = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def set_disconnected_callback(self, callback: Callable[[], None] | None) -> None:
        self.disconnected_callback = callback

    def has_characteristic(self, service: str, characteristic: str) -> bool:
        return characteristic not in self.missing

    async def read_characteristic(self, service: str, characteristic: str) -> bytes:
        self.read_calls.append(characteristic)
        return self.reads.get(characteristic, b"")

    async def write_characteristic(
            self,
            service: str,
            characteristic: str,
            data: bytes,
            response: bool = True,
    ) -> None:
        self.writes.append((characteristic, bytes(data), response))

    async def start_notify(
            self,
            service: str,
            characteristic: str,
            callback: NotificationCallback,
            indicate: bool = False,
    ) -> None:
        self.subscriptions[characteristic] = (callback, indicate)

    async def start_scan(self, callback: AdvertisementCallback) -> None:
        self.scans_started += 1
        self.scan_callback = callback

    async def stop_scan(self) -> None:
        self.scan_callback = None

    # Scale side

    def notify(self, characteristic: str, data: bytes) -> None:
        """Send a notification on a subscribed characteristic."""
        callback, _indicate = self.subscriptions[characteristic]
        callback(characteristic, bytes(data))

    def advertise(self, manufacturer_data: dict[int, bytes], name: str | None = None) -> None:
        """Deliver one advertisement to the running scan."""
        assert self.scan_callback is not None, "not scanning"
        self.scan_callback(SCALE_ADDRESS, name, manufacturer_data)

    def drop_link(self) -> None:
        self.connected = False
        if self.disconnected_callback is not None:
            self.disconnected_callback()

    def written_to(self, characteristic: str) -> list[bytes]:
        return [data for char, data, _response in self.writes if char == characteristic]


class Recorder:
    """Collects measurements and status events emitted by a driver."""

    def __init__(self):
        self.measurements: list[ScaleMeasurement] = []
        self.events: list[StatusEvent] = []

    def on_measurement(self, measurement: ScaleMeasurement) -> None:
        self.measurements.append(measurement)

    def on_status(self, event: StatusEvent) -> None:
        self.events.append(event)

    @property
    def messages(self) -> list:
        return [event.message for event in self.events if event.message is not None]

    @property
    def statuses(self) -> list:
        return [event.status for event in self.events]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def user() -> ScaleUser:
    return ScaleUser(
        id=1,
        name="Alex Example",
        birthday=date(1990, 5, 17),
        gender=Gender.MALE,
        height=180.0,
        activity_level=ActivityLevel.MODERATE,
    )
