"""BLE transport layer."""

from .base import AdvertisementCallback, NotificationCallback, Transport
from .connection import BLEConnection

__all__ = [
    "AdvertisementCallback",
    "BLEConnection",
    "NotificationCallback",
    "Transport",
]
