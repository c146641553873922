"""Maps advertised device names to scale drivers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .driver import ScaleDriver
from .drivers import (
    BeurerBF600Driver,
    BeurerSanitasDriver,
    CultSmartScaleProDriver,
    DeviceType,
    ESCS20MDriver,
    OKOKDriver,
    SinocareDriver,
    StandardWeightProfileDriver,
)
from .exceptions import DriverNotFoundError

_LOGGER = logging.getLogger(__name__)

NameMatcher = Callable[[str], bool]


@dataclass(frozen=True)
class DriverEntry:
    """Driver class plus the predicate selecting it.

    The predicate receives the lower-cased advertised name.
    """
    driver_cls: type[ScaleDriver]
    matches: NameMatcher | None = None


def _is_beurer_sanitas(name: str) -> bool:
    return DeviceType.from_device_name(name) is not None


def _is_beurer_bf600(name: str) -> bool:
    return "bf600" in name or "bf850" in name


def _is_okok(name: str) -> bool:
    return name in ("adv", "chipsea-ble")


def _is_sinocare(name: str) -> bool:
    return name == "weight scale"


def _is_escs20m(name: str) -> bool:
    return name == "es-cs20m"


def _is_cult_smart_scale_pro(name: str) -> bool:
    return name.startswith("cult") or "smart scale pro" in name


class DriverRegistry:
    """Ordered list of drivers; the first matching entry wins."""

    def __init__(self):
        self._entries: list[DriverEntry] = []

    @classmethod
    def default(cls) -> DriverRegistry:
        """Registry with all built-in drivers."""
        registry = cls()
        registry.register(BeurerSanitasDriver, _is_beurer_sanitas)
        registry.register(BeurerBF600Driver, _is_beurer_bf600)
        registry.register(OKOKDriver, _is_okok)
        registry.register(SinocareDriver, _is_sinocare)
        registry.register(ESCS20MDriver, _is_escs20m)
        registry.register(CultSmartScaleProDriver, _is_cult_smart_scale_pro)
        # Only reachable by id: any scale may implement the standard profile
        registry.register(StandardWeightProfileDriver)
        return registry

    def register(self, driver_cls: type[ScaleDriver], matches: NameMatcher | None = None) -> None:
        """Add a driver.

        Args:
            driver_cls: Driver class with a unique ``driver_id``
            matches: Predicate on the lower-cased advertised name; None
                registers a driver that is only found by id

        Raises:
            ValueError: If the driver id is already registered
        """
        driver_id = driver_cls.driver_id
        if not driver_id:
            raise ValueError(f"{driver_cls.__name__} has no driver_id")
        if any(entry.driver_cls.driver_id == driver_id for entry in self._entries):
            raise ValueError(f"Driver id {driver_id!r} is already registered")
        self._entries.append(DriverEntry(driver_cls, matches))

    @property
    def driver_ids(self) -> list[str]:
        return [entry.driver_cls.driver_id for entry in self._entries]

    def find(self, device_name: str) -> type[ScaleDriver] | None:
        """Driver class for an advertised name, or None if no driver matches."""
        name = device_name.lower()
        for entry in self._entries:
            if entry.matches is not None and entry.matches(name):
                return entry.driver_cls
        return None

    def get(self, driver_id: str) -> type[ScaleDriver]:
        """Driver class by id.

        Raises:
            DriverNotFoundError: If no driver has this id
        """
        for entry in self._entries:
            if entry.driver_cls.driver_id == driver_id:
                return entry.driver_cls
        raise DriverNotFoundError(f"No driver with id {driver_id!r}")

    def create(self, device_name: str, **kwargs) -> ScaleDriver:
        """Instantiate the driver for an advertised name.

        Args:
            device_name: Advertised name of the scale
            **kwargs: Passed to the driver constructor (transport, user, ...)

        Raises:
            DriverNotFoundError: If no driver matches the name
        """
        driver_cls = self.find(device_name)
        if driver_cls is None:
            raise DriverNotFoundError(f"No driver for device {device_name!r}")
        _LOGGER.debug("Using %s for %r", driver_cls.__name__, device_name)
        return driver_cls(device_name=device_name, **kwargs)

    def create_by_id(self, driver_id: str, device_name: str = "", **kwargs) -> ScaleDriver:
        """Instantiate a driver chosen by id rather than by name.

        Raises:
            DriverNotFoundError: If no driver has this id
        """
        return self.get(driver_id)(device_name=device_name, **kwargs)
