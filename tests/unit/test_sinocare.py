"""Test the Sinocare broadcast driver."""

from __future__ import annotations

import pytest
import pytest_asyncio

from bodyscale_ble.drivers.sinocare import MANUFACTURER_DATA_ID, SinocareDriver
from bodyscale_ble.protocol.codec import xor_checksum


def frame(dekagrams: int, corrupt: bool = False) -> bytes:
    data = bytearray(17)
    data[0:6] = bytes.fromhex("aabbccddeeff")
    data[9] = dekagrams & 0xFF
    data[10] = dekagrams >> 8
    data[16] = xor_checksum(data, 6, 10)
    if corrupt:
        data[16] ^= 0x01
    return bytes(data)


@pytest_asyncio.fixture
async def driver(transport, recorder, user):
    driver = SinocareDriver(transport, user=user, on_measurement=recorder.on_measurement)
    await driver.connect()
    yield driver
    await driver.disconnect()


class TestSettling:
    """Test the repeat counter."""

    @pytest.mark.asyncio
    async def test_tenth_identical_reading_is_emitted(self, driver, transport, recorder):
        for _ in range(9):
            transport.advertise({MANUFACTURER_DATA_ID: frame(7520)})
        await driver.settle()
        assert recorder.measurements == []
        assert driver.is_active

        transport.advertise({MANUFACTURER_DATA_ID: frame(7520)})
        await driver.wait_closed()
        assert [m.weight for m in recorder.measurements] == [pytest.approx(75.2)]

    @pytest.mark.asyncio
    async def test_changing_weight_restarts_count(self, driver, transport, recorder):
        for _ in range(8):
            transport.advertise({MANUFACTURER_DATA_ID: frame(7500)})
        for _ in range(8):
            transport.advertise({MANUFACTURER_DATA_ID: frame(7520)})
        await driver.settle()

        assert recorder.measurements == []
        assert driver.last_seen_weight == 7520
        assert driver.repeat_count == 8

    @pytest.mark.asyncio
    async def test_bad_checksum_and_zero_weight_are_ignored(self, driver, transport, recorder):
        transport.advertise({MANUFACTURER_DATA_ID: frame(7520)})
        transport.advertise({MANUFACTURER_DATA_ID: frame(7520, corrupt=True)})
        transport.advertise({MANUFACTURER_DATA_ID: frame(0)})
        transport.advertise({MANUFACTURER_DATA_ID: b"\x00" * 8})
        await driver.settle()

        assert driver.repeat_count == 1
        assert recorder.measurements == []
