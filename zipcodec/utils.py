"""
Copyright 2025 DNAi inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

"""
Utility functions for the ZIP codec.

This module provides little-endian field access at explicit offsets of a flat
buffer, CRC32 calculation, DOS date/time conversion and text decoding of
names and comments.

The field accessors do no bounds checking of their own: callers validate
offsets against the buffer first, and an out-of-range access raises
``struct.error``.
"""

import struct
import zlib
from datetime import datetime

from .constants import FLAG_UTF8
from .errors import ZipFormatError

_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


def crc32(data: bytes) -> int:
    """Calculate CRC32 checksum for data.

    Args:
        data: Bytes to calculate CRC32 for.

    Returns:
        CRC32 value as unsigned 32-bit integer.
    """
    return zlib.crc32(data) & 0xFFFFFFFF


def get_u16(buffer, offset: int) -> int:
    """Read a little-endian 16-bit unsigned integer at ``offset``."""
    return _U16.unpack_from(buffer, offset)[0]


def get_u32(buffer, offset: int) -> int:
    """Read a little-endian 32-bit unsigned integer at ``offset``."""
    return _U32.unpack_from(buffer, offset)[0]


def get_u64(buffer, offset: int) -> int:
    """Read a little-endian 64-bit unsigned integer at ``offset``."""
    return _U64.unpack_from(buffer, offset)[0]


def put_u16(buffer: bytearray, offset: int, value: int) -> None:
    """Write a little-endian 16-bit unsigned integer at ``offset``."""
    _U16.pack_into(buffer, offset, value)


def put_u32(buffer: bytearray, offset: int, value: int) -> None:
    """Write a little-endian 32-bit unsigned integer at ``offset``."""
    _U32.pack_into(buffer, offset, value)


def put_u64(buffer: bytearray, offset: int, value: int) -> None:
    """Write a little-endian 64-bit unsigned integer at ``offset``."""
    _U64.pack_into(buffer, offset, value)


def dos_datetime_to_timestamp(dos_datetime: int) -> datetime:
    """Convert a packed 32-bit DOS date/time to Python datetime.

    The date occupies the high 16 bits, the time the low 16 bits.

    DOS date format (16 bits):
        Bits 0-4: Day (1-31)
        Bits 5-8: Month (1-12)
        Bits 9-15: Year - 1980 (0-127, so 1980-2107)

    DOS time format (16 bits):
        Bits 0-4: Second / 2 (0-29, so 0-58 seconds in 2-second increments)
        Bits 5-10: Minute (0-59)
        Bits 11-15: Hour (0-23)

    Args:
        dos_datetime: Packed DOS date/time value (32-bit unsigned integer).

    Returns:
        datetime object representing the DOS date/time.
    """
    dos_date = (dos_datetime >> 16) & 0xFFFF
    dos_time = dos_datetime & 0xFFFF

    day = dos_date & 0x1F
    month = (dos_date >> 5) & 0x0F
    year = ((dos_date >> 9) & 0x7F) + 1980

    second = (dos_time & 0x1F) * 2
    minute = (dos_time >> 5) & 0x3F
    hour = (dos_time >> 11) & 0x1F

    try:
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        # Zeroed or garbage timestamps are common in the wild
        return datetime(1980, 1, 1, 0, 0, 0)


def timestamp_to_dos_datetime(dt: datetime) -> int:
    """Convert Python datetime to a packed 32-bit DOS date/time.

    Years outside 1980-2107 are clamped; seconds lose their lowest bit.

    Args:
        dt: datetime object to convert.

    Returns:
        Packed DOS date/time (date in the high 16 bits).
    """
    year = dt.year - 1980
    if year < 0:
        year = 0
    elif year > 127:
        year = 127

    dos_date = dt.day | (dt.month << 5) | (year << 9)
    dos_time = (dt.second // 2) | (dt.minute << 5) | (dt.hour << 11)

    return ((dos_date & 0xFFFF) << 16) | (dos_time & 0xFFFF)


def decode_text(raw: bytes, flags: int) -> str:
    """Decode an entry name or comment.

    UTF-8 is used when the UTF-8 flag is set; otherwise UTF-8 is tried first
    and CP437, the historical ZIP code page, is the fallback.

    Raises:
        ZipFormatError: If the UTF-8 flag is set but the bytes are not UTF-8.
    """
    if flags & FLAG_UTF8:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ZipFormatError(f"Text flagged as UTF-8 is not valid UTF-8: {e}") from e
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("cp437")


def encode_text(text: str) -> tuple[bytes, bool]:
    """Encode a name or comment as UTF-8.

    Returns:
        Tuple of (encoded bytes, whether the UTF-8 flag is required).
    """
    raw = text.encode("utf-8")
    return raw, not text.isascii()
