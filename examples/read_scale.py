"""Read one measurement from a scale and print it as JSON.

Usage:
    uv run python examples/read_scale.py --scan
    uv run python examples/read_scale.py AA:BB:CC:DD:EE:FF --name "BF600" --store users.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import date

from bodyscale_ble import (
    BLEConnection,
    BluetoothStatus,
    DriverRegistry,
    JsonUserProfileStore,
    ScaleMeasurement,
    ScaleUser,
    SessionConfig,
    StatusEvent,
    UserInteractionType,
    discover_scales,
    format_scale_message,
)


def _print_measurement(measurement: ScaleMeasurement) -> None:
    print(json.dumps(measurement.to_dict(), indent=2))


def _print_status(event: StatusEvent) -> None:
    if event.status == BluetoothStatus.SCALE_MESSAGE and event.message is not None:
        print(f"* {format_scale_message(event.message, event.value)}")
    elif event.status == BluetoothStatus.USER_INTERACTION_REQUIRED:
        print(f"* scale needs input: {event.interaction.name} {event.value}")
    else:
        print(f"* {event.status.name}")


async def scan(timeout: float) -> None:
    for device, driver_cls in await discover_scales(timeout):
        print(f"{device.address}  {device.name!r:24}  {driver_cls.driver_id}")


async def read(args: argparse.Namespace) -> None:
    store = JsonUserProfileStore(args.store)
    if store.get_user(args.user_id) is None:
        store.add_user(ScaleUser(
            id=args.user_id,
            name=args.user_name,
            birthday=date.fromisoformat(args.birthday),
            height=args.height,
        ))
    store.select_user(args.user_id)

    config = SessionConfig(idle_timeout=args.idle_timeout)
    connection = BLEConnection.from_config(args.address, config)
    registry = DriverRegistry.default()
    kwargs = dict(
        transport=connection,
        store=store,
        config=config,
        on_measurement=_print_measurement,
        on_status=_print_status,
    )
    if args.driver:
        driver = registry.create_by_id(args.driver, device_name=args.name, **kwargs)
    else:
        driver = registry.create(args.name, **kwargs)

    async with driver:
        def on_status(event: StatusEvent) -> None:
            _print_status(event)
            # Answer with the first choice offered
            if event.interaction == UserInteractionType.CHOOSE_USER and event.value:
                _, scale_index = event.value[0]
                asyncio.get_running_loop().create_task(
                    driver.select_scale_user_index(args.user_id, scale_index)
                )

        driver.set_callbacks(_print_measurement, on_status)
        await driver.wait_closed()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("address", nargs="?", help="Scale MAC address")
    parser.add_argument("--scan", action="store_true", help="List supported scales and exit")
    parser.add_argument("--name", default="", help="Advertised name, selects the driver")
    parser.add_argument("--driver", help="Driver id, overrides --name")
    parser.add_argument("--store", default="bodyscale-users.json", help="User profile file")
    parser.add_argument("--user-id", type=int, default=1)
    parser.add_argument("--user-name", default="User")
    parser.add_argument("--birthday", default="1990-01-01")
    parser.add_argument("--height", type=float, default=170.0)
    parser.add_argument("--timeout", type=float, default=10.0, help="Scan duration")
    parser.add_argument("--idle-timeout", type=float, default=60.0)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.scan:
        asyncio.run(scan(args.timeout))
        return
    if not args.address:
        parser.error("address is required unless --scan is given")
    asyncio.run(read(args))


if __name__ == "__main__":
    main()
