"""Beurer BF600 / BF850: standard profile plus a vendor service for user data."""

from __future__ import annotations

import logging

from ..protocol.uuids import from_short_code
from .standard_weight_profile import StandardWeightProfileDriver

_LOGGER = logging.getLogger(__name__)

SERVICE_BEURER_CUSTOM = from_short_code(0xFFF0)
CHARACTERISTIC_SCALE_SETTING = from_short_code(0xFFF1)
CHARACTERISTIC_USER_LIST = from_short_code(0xFFF2)
CHARACTERISTIC_ACTIVITY_LEVEL = from_short_code(0xFFF3)
CHARACTERISTIC_TAKE_MEASUREMENT = from_short_code(0xFFF4)
CHARACTERISTIC_REFER_WEIGHT_BF = from_short_code(0xFFF5)
CHARACTERISTIC_INITIALS = from_short_code(0xFFF6)

MAX_USERS = 8


class BeurerBF600Driver(StandardWeightProfileDriver):
    """Beurer BF600 family (BF600, BF850)."""

    driver_id = "beurer_bf600"

    def driver_name(self) -> str:
        return f"Beurer {self.device_name}".rstrip()

    def vendor_specific_max_user_count(self) -> int:
        return MAX_USERS

    async def write_activity_level(self) -> None:
        level = self.user.activity_level.value + 1
        _LOGGER.debug("Activity level %d", level)
        await self.write_bytes(SERVICE_BEURER_CUSTOM, CHARACTERISTIC_ACTIVITY_LEVEL, bytes([level]))

    async def write_initials(self) -> None:
        # Only the BF850 has a display for initials
        if not self.have_characteristic(SERVICE_BEURER_CUSTOM, CHARACTERISTIC_INITIALS):
            return
        initials = self.get_initials(self.user.name)
        _LOGGER.debug("Initials %r", initials)
        await self.write_bytes(
            SERVICE_BEURER_CUSTOM, CHARACTERISTIC_INITIALS, initials.encode("ascii", errors="replace")
        )

    async def request_measurement(self) -> None:
        await self.write_bytes(SERVICE_BEURER_CUSTOM, CHARACTERISTIC_TAKE_MEASUREMENT, b"\x00")

    async def set_notify_vendor_specific_user_list(self) -> bool:
        subscribed = await self.set_notification_on(SERVICE_BEURER_CUSTOM, CHARACTERISTIC_USER_LIST)
        if not subscribed:
            _LOGGER.debug("User list notifications not available")
        return subscribed

    async def request_vendor_specific_user_list(self) -> bool:
        await self.write_bytes(SERVICE_BEURER_CUSTOM, CHARACTERISTIC_USER_LIST, b"\x00")
        return True

    async def on_bluetooth_notify(self, characteristic: str, data: bytes) -> None:
        if characteristic == CHARACTERISTIC_USER_LIST:
            self.handle_vendor_specific_user_list(data)
        else:
            await super().on_bluetooth_notify(characteristic, data)
