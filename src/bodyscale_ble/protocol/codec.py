"""Byte-level helpers shared by all scale protocols.

Vendor frames mix endianness freely, so every integer helper takes the byte
order explicitly. Reads past the end of a frame raise InvalidFrameError
instead of IndexError so callers can drop the frame.
"""

from __future__ import annotations

import struct
from datetime import datetime
from typing import Literal

from ..exceptions import InvalidFrameError

ByteOrder = Literal["little", "big"]

# Length of a Bluetooth SIG "Date Time" field
DATE_TIME_LENGTH = 7

# struct format codes by field size; 24-bit fields are read as 16 + 8 bits
_UNSIGNED_CODES = {1: "B", 2: "H", 4: "I", 8: "Q"}


def _prefix(byteorder: ByteOrder) -> str:
    return "<" if byteorder == "little" else ">"


def read_uint(
        data: bytes,
        offset: int,
        size: int,
        byteorder: ByteOrder = "little",
        signed: bool = False,
) -> int:
    """Read an integer of `size` bytes (1, 2, 3, 4 or 8) at `offset`.

    Raises:
        InvalidFrameError: If the field does not fit in data
    """
    if offset < 0 or offset + size > len(data):
        raise InvalidFrameError(
            f"Cannot read {size} bytes at offset {offset} from {len(data)}-byte frame"
        )
    if size == 3:
        if byteorder == "little":
            low = struct.unpack_from("<H", data, offset)[0]
            value = low | data[offset + 2] << 16
        else:
            high = struct.unpack_from(">H", data, offset)[0]
            value = high << 8 | data[offset + 2]
        if signed and value & 0x800000:
            value -= 1 << 24
        return value
    code = _UNSIGNED_CODES[size]
    if signed:
        code = code.lower()
    return struct.unpack_from(_prefix(byteorder) + code, data, offset)[0]


def write_uint(value: int, size: int, byteorder: ByteOrder = "little") -> bytes:
    """Encode the low `size` bytes of value."""
    value &= (1 << (8 * size)) - 1
    if size == 3:
        packed = struct.pack(_prefix(byteorder) + "I", value)
        return packed[:3] if byteorder == "little" else packed[1:]
    return struct.pack(_prefix(byteorder) + _UNSIGNED_CODES[size], value)


def uint8(data: bytes, offset: int) -> int:
    return read_uint(data, offset, 1)


def uint16_le(data: bytes, offset: int) -> int:
    return read_uint(data, offset, 2, "little")


def uint16_be(data: bytes, offset: int) -> int:
    return read_uint(data, offset, 2, "big")


def uint24_le(data: bytes, offset: int) -> int:
    return read_uint(data, offset, 3, "little")


def uint24_be(data: bytes, offset: int) -> int:
    return read_uint(data, offset, 3, "big")


def uint32_le(data: bytes, offset: int) -> int:
    return read_uint(data, offset, 4, "little")


def uint32_be(data: bytes, offset: int) -> int:
    return read_uint(data, offset, 4, "big")


def xor_checksum(data: bytes, offset: int = 0, length: int | None = None, seed: int = 0) -> int:
    """XOR all bytes of data[offset:offset + length] into seed.

    Some vendors include header bytes in the checksum that are not part of
    the payload handed to the driver; pass those as `seed`.
    """
    end = len(data) if length is None else offset + length
    if offset < 0 or end > len(data):
        raise InvalidFrameError(
            f"Checksum range {offset}..{end} outside {len(data)}-byte frame"
        )
    checksum = seed & 0xFF
    for byte in data[offset:end]:
        checksum ^= byte
    return checksum


def sum_checksum(data: bytes, offset: int = 0, length: int | None = None) -> int:
    """Sum of data[offset:offset + length], truncated to one byte."""
    end = len(data) if length is None else offset + length
    if offset < 0 or end > len(data):
        raise InvalidFrameError(
            f"Checksum range {offset}..{end} outside {len(data)}-byte frame"
        )
    return sum(data[offset:end]) & 0xFF


def is_bit_set(value: int, bit: int) -> bool:
    return (value >> bit) & 1 == 1


def byte_in_hex(data: bytes | bytearray | None) -> str:
    """Format bytes as upper-case hex pairs, e.g. "CA 20 01"."""
    if not data:
        return ""
    return " ".join(f"{byte:02X}" for byte in data)


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(value, maximum))


def decode_date_time(data: bytes, offset: int = 0) -> datetime | None:
    """Decode a SIG Date Time field (year LE16, month, day, h, m, s).

    Returns None when the device reports an unknown date (zero year or
    month) or the fields do not form a valid date.

    Raises:
        InvalidFrameError: If fewer than 7 bytes remain
    """
    year = uint16_le(data, offset)
    month, day, hour, minute, second = (
        uint8(data, offset + i) for i in range(2, DATE_TIME_LENGTH)
    )
    if year == 0 or month == 0 or day == 0:
        return None
    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        return None


def encode_date_time(value: datetime) -> bytes:
    """Encode a datetime as a 7-byte SIG Date Time field."""
    return (
        write_uint(value.year, 2)
        + bytes([value.month, value.day, value.hour, value.minute, value.second])
    )


def encode_current_time(value: datetime) -> bytes:
    """Encode the 10-byte SIG Current Time characteristic.

    Layout: date time (7), day of week (1 = Monday), fractions of 1/256 s,
    adjust reason (manual time update).
    """
    fractions = value.microsecond * 256 // 1_000_000
    return encode_date_time(value) + bytes([value.isoweekday(), fractions, 0x01])


class ByteReader:
    """Sequential reader over a frame.

    Keeps an offset that advances with every read, so optional fields can be
    consumed in the order a flags byte announces them.
    """

    def __init__(self, data: bytes, offset: int = 0):
        self.data = bytes(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def _take(self, size: int, byteorder: ByteOrder, signed: bool = False) -> int:
        value = read_uint(self.data, self.offset, size, byteorder, signed)
        self.offset += size
        return value

    def uint8(self) -> int:
        return self._take(1, "little")

    def uint16(self, byteorder: ByteOrder = "little") -> int:
        return self._take(2, byteorder)

    def sint16(self, byteorder: ByteOrder = "little") -> int:
        return self._take(2, byteorder, signed=True)

    def uint24(self, byteorder: ByteOrder = "little") -> int:
        return self._take(3, byteorder)

    def uint32(self, byteorder: ByteOrder = "little") -> int:
        return self._take(4, byteorder)

    def date_time(self) -> datetime | None:
        value = decode_date_time(self.data, self.offset)
        self.offset += DATE_TIME_LENGTH
        return value

    def raw(self, size: int) -> bytes:
        if size < 0 or self.offset + size > len(self.data):
            raise InvalidFrameError(
                f"Cannot read {size} bytes at offset {self.offset} from {len(self.data)}-byte frame"
            )
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def string(self, size: int | None = None, encoding: str = "utf-8") -> str:
        """Read a string, stopping at the first NUL byte."""
        chunk = self.raw(self.remaining if size is None else size)
        return chunk.split(b"\x00", 1)[0].decode(encoding, errors="replace")
