"""Exceptions raised by bodyscale-ble."""

from __future__ import annotations


class BodyScaleError(Exception):
    """Base exception for all bodyscale-ble errors."""


class BLEConnectionError(BodyScaleError):
    """Connecting to, talking to or scanning for a scale failed."""


class BLETimeoutError(BLEConnectionError):
    """A BLE operation did not complete in time."""


class ProtocolError(BodyScaleError):
    """A frame does not follow the vendor protocol."""


class InvalidFrameError(ProtocolError):
    """Frame is truncated or a field lies outside the payload."""


class ChecksumError(ProtocolError):
    """Frame checksum does not match its content."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Checksum mismatch: expected 0x{expected:02x}, got 0x{actual:02x}"
        )
        self.expected = expected
        self.actual = actual


class DriverNotFoundError(BodyScaleError, LookupError):
    """No driver is registered for a device name or driver id."""


class UserProfileError(BodyScaleError):
    """Persisted user profile data could not be loaded."""
