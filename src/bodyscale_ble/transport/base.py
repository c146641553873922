"""Interface between scale drivers and the BLE stack."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

NotificationCallback = Callable[[str, bytes], None]
"""Called with (characteristic UUID, value) for every notify/indicate."""

AdvertisementCallback = Callable[[str, "str | None", dict[int, bytes]], None]
"""Called with (address, advertised name, manufacturer data) per advertisement."""


@runtime_checkable
class Transport(Protocol):
    """What a driver needs from a BLE connection.

    Service and characteristic UUIDs are lower-case 128-bit strings (see
    ``bodyscale_ble.protocol.uuids``). Callbacks may be invoked from any
    thread; drivers serialize them onto their own event loop.
    """

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def set_disconnected_callback(self, callback: Callable[[], None] | None) -> None: ...

    def has_characteristic(self, service: str, characteristic: str) -> bool: ...

    async def read_characteristic(self, service: str, characteristic: str) -> bytes: ...

    async def write_characteristic(
            self,
            service: str,
            characteristic: str,
            data: bytes,
            response: bool = True,
    ) -> None: ...

    async def start_notify(
            self,
            service: str,
            characteristic: str,
            callback: NotificationCallback,
            indicate: bool = False,
    ) -> None: ...

    async def start_scan(self, callback: AdvertisementCallback) -> None: ...

    async def stop_scan(self) -> None: ...
