"""bodyscale-ble.

  Async drivers for Bluetooth Low Energy body-composition scales.
  """

from .bodymetrics import YunmaiLib
from .config import SessionConfig
from .discovery import discover_scales
from .driver import BroadcastScaleDriver, ScaleDriver
from .drivers import (
    BeurerBF600Driver,
    BeurerSanitasDriver,
    CultSmartScaleProDriver,
    ESCS20MDriver,
    OKOKDriver,
    SinocareDriver,
    StandardWeightProfileDriver,
)
from .exceptions import (
    BLEConnectionError,
    BLETimeoutError,
    BodyScaleError,
    ChecksumError,
    DriverNotFoundError,
    InvalidFrameError,
    ProtocolError,
    UserProfileError,
)
from .machine import IdleWatchdog, StepMachine
from .models import (
    ActivityLevel,
    BluetoothStatus,
    Gender,
    ScaleMeasurement,
    ScaleMessage,
    ScaleUser,
    StatusEvent,
    UserInteractionType,
    WeightUnit,
    format_scale_message,
)
from .notifications import NotificationDispatcher
from .registry import DriverRegistry
from .store import JsonUserProfileStore, UserProfileStore
from .transport import BLEConnection, Transport

__version__ = "0.1.0"

__all__ = [
    # Main API
    "DriverRegistry",
    "discover_scales",
    "BLEConnection",
    "Transport",
    "SessionConfig",
    # Framework
    "ScaleDriver",
    "BroadcastScaleDriver",
    "StepMachine",
    "IdleWatchdog",
    "NotificationDispatcher",
    # Drivers
    "StandardWeightProfileDriver",
    "BeurerBF600Driver",
    "BeurerSanitasDriver",
    "OKOKDriver",
    "SinocareDriver",
    "ESCS20MDriver",
    "CultSmartScaleProDriver",
    # Exceptions
    "BodyScaleError",
    "BLEConnectionError",
    "BLETimeoutError",
    "ProtocolError",
    "InvalidFrameError",
    "ChecksumError",
    "DriverNotFoundError",
    "UserProfileError",
    # Models
    "ScaleMeasurement",
    "ScaleUser",
    "StatusEvent",
    "UserProfileStore",
    "JsonUserProfileStore",
    # Enums
    "ActivityLevel",
    "BluetoothStatus",
    "Gender",
    "ScaleMessage",
    "UserInteractionType",
    "WeightUnit",
    # Utilities
    "YunmaiLib",
    "format_scale_message",
]
