"""BLE connection management."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError
from bleak_retry_connector import BleakClientWithServiceCache, establish_connection

from ..exceptions import BLEConnectionError, BLETimeoutError
from ..protocol.uuids import pretty_print
from .base import AdvertisementCallback, NotificationCallback

if TYPE_CHECKING:
    from bleak.backends.characteristic import BleakGATTCharacteristic
    from bleak.backends.device import BLEDevice
    from bleak.backends.scanner import AdvertisementData

    from ..config import SessionConfig

_LOGGER = logging.getLogger(__name__)


class BLEConnection:
    """Transport for one scale, backed by bleak.

    Features:
    - Automatic retry logic with bleak-retry-connector
    - Service caching for faster reconnections
    - Context manager for automatic cleanup
    - Advertisement scanning for broadcast-only scales
    """

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            timeout: float = 10.0,
            max_attempts: int = 4,
            use_services_cache: bool = True,
    ):
        """Initialize BLE connection manager.

        Args:
            mac_address: Device MAC address
            ble_device: Optional BLEDevice from a previous scan
            timeout: Scan and connection timeout in seconds (default: 10)
            max_attempts: Maximum connection attempts for bleak-retry-connector (default: 4)
            use_services_cache: Enable GATT service caching for faster reconnections (default: True)
        """
        self.mac_address = mac_address
        self.ble_device = ble_device
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.use_services_cache = use_services_cache

        self._client: BleakClient | None = None
        self._scanner: BleakScanner | None = None
        self._disconnected_callback: Callable[[], None] | None = None
        self._closing = False

    @classmethod
    def from_config(
            cls,
            mac_address: str,
            config: SessionConfig,
            ble_device: BLEDevice | None = None,
    ) -> BLEConnection:
        """Create a connection using the connect settings of a SessionConfig."""
        return cls(
            mac_address,
            ble_device=ble_device,
            timeout=config.connect_timeout,
            max_attempts=config.max_attempts,
            use_services_cache=config.use_services_cache,
        )

    async def __aenter__(self) -> BLEConnection:
        """Connect to device (context manager entry)."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from device (context manager exit)."""
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._client is not None and self._client.is_connected

    def set_disconnected_callback(self, callback: Callable[[], None] | None) -> None:
        """Register a callback for link losses not caused by disconnect()."""
        self._disconnected_callback = callback

    async def connect(self) -> None:
        """Establish BLE connection to device.

        Uses bleak-retry-connector for automatic retry logic and service caching.

        Raises:
            BLEConnectionError: If the device is not found or connection fails
            BLETimeoutError: If connection times out
        """
        if self.is_connected:
            return

        self._closing = False
        try:
            _LOGGER.debug(
                "Connecting to %s with bleak-retry-connector (max_attempts=%d)",
                self.mac_address,
                self.max_attempts,
            )

            if self.ble_device:
                device = self.ble_device
            else:
                device = await BleakScanner.find_device_by_address(
                    self.mac_address,
                    timeout=self.timeout,
                )
                if device is None:
                    raise BLETimeoutError(
                        f"Device {self.mac_address} not found during scan"
                    )

            self._client = await establish_connection(
                client_class=BleakClientWithServiceCache,
                device=device,
                name=device.name or self.mac_address,
                disconnected_callback=self._on_disconnected,
                max_attempts=self.max_attempts,
                use_services_cache=self.use_services_cache,
                timeout=self.timeout,
            )

            _LOGGER.debug("Connected to %s", self.mac_address)

        except BLEConnectionError:
            raise
        except asyncio.TimeoutError as e:
            raise BLETimeoutError(
                f"Connection timeout after {self.timeout}s"
            ) from e
        except Exception as e:
            raise BLEConnectionError(
                f"Failed to connect: {e}"
            ) from e

    async def disconnect(self) -> None:
        """Disconnect from device and stop a running scan."""
        self._closing = True
        await self.stop_scan()
        if self._client and self._client.is_connected:
            try:
                _LOGGER.debug("Disconnecting from %s", self.mac_address)
                await self._client.disconnect()
            except BleakError as e:
                _LOGGER.warning("Error during disconnect: %s", e)
        self._client = None

    def _on_disconnected(self, _client: BleakClient) -> None:
        if self._closing:
            return
        _LOGGER.debug("Connection to %s lost", self.mac_address)
        if self._disconnected_callback is not None:
            self._disconnected_callback()

    def _require_client(self) -> BleakClient:
        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Not connected")
        return self._client

    def _find_characteristic(self, service: str, characteristic: str) -> BleakGATTCharacteristic | None:
        client = self._require_client()
        gatt_service = client.services.get_service(service)
        if gatt_service is None:
            return None
        return gatt_service.get_characteristic(characteristic)

    def has_characteristic(self, service: str, characteristic: str) -> bool:
        """Check if the connected device offers the characteristic."""
        if not self.is_connected:
            return False
        return self._find_characteristic(service, characteristic) is not None

    def _get_characteristic(self, service: str, characteristic: str) -> BleakGATTCharacteristic:
        char = self._find_characteristic(service, characteristic)
        if char is None:
            raise BLEConnectionError(
                f"Characteristic {pretty_print(characteristic)} not found "
                f"in service {pretty_print(service)}"
            )
        return char

    async def read_characteristic(self, service: str, characteristic: str) -> bytes:
        """Read a characteristic value.

        Raises:
            BLEConnectionError: If not connected or read fails
        """
        char = self._get_characteristic(service, characteristic)
        try:
            return bytes(await self._require_client().read_gatt_char(char))
        except BleakError as e:
            raise BLEConnectionError(f"Read failed: {e}") from e

    async def write_characteristic(
            self,
            service: str,
            characteristic: str,
            data: bytes,
            response: bool = True,
    ) -> None:
        """Write to a characteristic.

        Raises:
            BLEConnectionError: If not connected or write fails
        """
        char = self._get_characteristic(service, characteristic)
        try:
            await self._require_client().write_gatt_char(char, data, response=response)
        except BleakError as e:
            raise BLEConnectionError(f"Write failed: {e}") from e

    async def start_notify(
            self,
            service: str,
            characteristic: str,
            callback: NotificationCallback,
            indicate: bool = False,
    ) -> None:
        """Subscribe to notifications or indications.

        bleak enables whichever of the two the characteristic supports, so
        `indicate` only affects logging here.

        Raises:
            BLEConnectionError: If not connected or subscription fails
        """
        char = self._get_characteristic(service, characteristic)
        key = characteristic.lower()

        def _forward(_sender: BleakGATTCharacteristic, data: bytearray) -> None:
            callback(key, bytes(data))

        try:
            await self._require_client().start_notify(char, _forward)
        except BleakError as e:
            raise BLEConnectionError(f"Subscribe failed: {e}") from e
        _LOGGER.debug(
            "%s enabled for %s",
            "Indications" if indicate else "Notifications",
            pretty_print(characteristic),
        )

    async def start_scan(self, callback: AdvertisementCallback) -> None:
        """Scan for advertisements of this device.

        Raises:
            BLEConnectionError: If the scanner cannot start
        """
        await self.stop_scan()
        address = self.mac_address.upper()

        def _detected(device: BLEDevice, adv: AdvertisementData) -> None:
            if device.address.upper() != address:
                return
            callback(device.address, adv.local_name or device.name, dict(adv.manufacturer_data))

        self._scanner = BleakScanner(detection_callback=_detected)
        try:
            await self._scanner.start()
        except BleakError as e:
            self._scanner = None
            raise BLEConnectionError(f"Scan failed: {e}") from e
        _LOGGER.debug("Scanning for advertisements of %s", self.mac_address)

    async def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except BleakError as e:
            _LOGGER.warning("Error stopping scan: %s", e)
