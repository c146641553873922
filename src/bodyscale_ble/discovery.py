"""Scanning for supported scales."""

from __future__ import annotations

import logging

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from .driver import ScaleDriver
from .exceptions import BLEConnectionError
from .registry import DriverRegistry

_LOGGER = logging.getLogger(__name__)


async def discover_scales(
        timeout: float = 10.0,
        registry: DriverRegistry | None = None,
) -> list[tuple[BLEDevice, type[ScaleDriver]]]:
    """Scan for scales with a known advertised name.

    Args:
        timeout: Scan duration in seconds
        registry: Driver registry (default: all built-in drivers)

    Returns:
        (device, driver class) pairs in the order the scanner reported them

    Raises:
        BLEConnectionError: If scanning fails
    """
    registry = registry or DriverRegistry.default()
    _LOGGER.debug("Scanning for scales (%.1fs)", timeout)
    try:
        devices = await BleakScanner.discover(timeout=timeout)
    except BleakError as e:
        raise BLEConnectionError(f"Scan failed: {e}") from e

    found = []
    for device in devices:
        if not device.name:
            continue
        driver_cls = registry.find(device.name)
        if driver_cls is None:
            continue
        _LOGGER.info("Found %s (%s), driver %s", device.name, device.address, driver_cls.driver_id)
        found.append((device, driver_cls))
    return found
