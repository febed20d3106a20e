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
ZIP structure definitions and parsing functions.

This module defines dataclasses for the ZIP records (local file headers,
central directory headers, end of central directory records and the ZIP64
extensions) and functions that decode them from an offset of an in-memory
buffer. Each parser checks that the whole fixed part of its record lies
inside the buffer before decoding it.
"""

import struct
from dataclasses import dataclass
from typing import Optional

from .constants import (
    CENTRAL_DIR_HEADER,
    CENTRAL_DIR_HEADER_SIZE,
    END_OF_CENTRAL_DIR,
    END_OF_CENTRAL_DIR_SIZE,
    LOCAL_FILE_HEADER,
    LOCAL_FILE_HEADER_SIZE,
    ZIP64_END_OF_CENTRAL_DIR,
    ZIP64_END_OF_CENTRAL_DIR_LEADING,
    ZIP64_END_OF_CENTRAL_DIR_LOCATOR,
    ZIP64_END_OF_CENTRAL_DIR_SIZE,
    ZIP64_EXTRA_FIELD_TAG,
    ZIP64_LOCATOR_SIZE,
    ZIP64_SENTINEL_32,
)
from .errors import ZipFormatError
from .utils import get_u16, get_u32, get_u64


@dataclass
class LocalFileHeader:
    """Fixed part of a local file header.

    Only the fixed 30 bytes are decoded; the name and extra field that follow
    are located through ``data_offset``.
    """

    offset: int
    version: int
    flags: int
    compression_method: int
    mod_time: int  # packed DOS date/time
    crc32: int
    compressed_size: int
    uncompressed_size: int
    filename_len: int
    extra_len: int

    @property
    def data_offset(self) -> int:
        """Offset of the compressed data following this header."""
        return self.offset + LOCAL_FILE_HEADER_SIZE + self.filename_len + self.extra_len


@dataclass
class CentralDirectoryHeader:
    """Central directory header structure.

    This header appears in the central directory and contains information
    about a file entry, including a pointer to the local file header.
    """

    offset: int
    version_made_by: int
    version: int
    flags: int
    compression_method: int
    mod_time: int  # packed DOS date/time
    crc32: int
    compressed_size: int
    uncompressed_size: int
    filename_len: int
    extra_len: int
    comment_len: int
    disk_num: int
    internal_attrs: int
    external_attrs: int
    local_header_offset: int

    @property
    def variable_length(self) -> int:
        """Combined length of the name, extra field and comment."""
        return self.filename_len + self.extra_len + self.comment_len


@dataclass
class EndOfCentralDirectory:
    """End of Central Directory record.

    This record marks the end of the central directory and contains
    information needed to locate the central directory.
    """

    offset: int
    disk_num: int
    cd_disk: int
    cd_records_on_disk: int
    cd_records_total: int
    cd_size: int
    cd_offset: int
    comment_len: int

    @property
    def end(self) -> int:
        """Offset one past the record's comment."""
        return self.offset + END_OF_CENTRAL_DIR_SIZE + self.comment_len


@dataclass
class Zip64EndOfCentralDirectory:
    """ZIP64 End of Central Directory record.

    This record is used when ZIP64 extensions are needed (large files,
    many entries, etc.).
    """

    offset: int
    size: int
    version_made_by: int
    version_needed: int
    disk_num: int
    cd_disk: int
    cd_records_on_disk: int
    cd_records_total: int
    cd_size: int
    cd_offset: int

    @property
    def end(self) -> int:
        """Offset one past the record, including any extensible data."""
        return self.offset + ZIP64_END_OF_CENTRAL_DIR_LEADING + self.size


@dataclass
class Zip64Locator:
    """ZIP64 End of Central Directory Locator.

    This record points to the ZIP64 End of Central Directory record.
    """

    offset: int
    disk_num: int
    zip64_eocd_offset: int
    total_disks: int


@dataclass
class Zip64ExtraField:
    """ZIP64 extra field data.

    Each value is present only if the corresponding 32-bit header field
    holds the 0xFFFFFFFF sentinel.
    """

    original_size: Optional[int] = None
    compressed_size: Optional[int] = None
    local_header_offset: Optional[int] = None
    disk_start: Optional[int] = None


def _require(buffer, offset: int, length: int, what: str) -> None:
    if offset < 0 or offset + length > len(buffer):
        raise ZipFormatError(
            f"{what} at offset 0x{offset:08X} extends beyond the archive "
            f"({length} bytes needed, archive size {len(buffer)})"
        )


def _check_signature(buffer, offset: int, expected: int, what: str) -> None:
    signature = get_u32(buffer, offset)
    if signature != expected:
        raise ZipFormatError(
            f"Invalid {what} signature at offset 0x{offset:08X}: 0x{signature:08X}, "
            f"expected 0x{expected:08X}"
        )


def parse_local_file_header(buffer, offset: int) -> LocalFileHeader:
    """Parse the fixed part of a local file header.

    Args:
        buffer: Archive contents.
        offset: Offset of the header's signature.

    Returns:
        LocalFileHeader object.

    Raises:
        ZipFormatError: If the signature is invalid or the buffer is truncated.
    """
    _require(buffer, offset, LOCAL_FILE_HEADER_SIZE, "Local file header")
    _check_signature(buffer, offset, LOCAL_FILE_HEADER, "local file header")

    return LocalFileHeader(
        offset=offset,
        version=get_u16(buffer, offset + 4),
        flags=get_u16(buffer, offset + 6),
        compression_method=get_u16(buffer, offset + 8),
        mod_time=get_u32(buffer, offset + 10),
        crc32=get_u32(buffer, offset + 14),
        compressed_size=get_u32(buffer, offset + 18),
        uncompressed_size=get_u32(buffer, offset + 22),
        filename_len=get_u16(buffer, offset + 26),
        extra_len=get_u16(buffer, offset + 28),
    )


def parse_central_directory_header(buffer, offset: int) -> CentralDirectoryHeader:
    """Parse the fixed 46 bytes of a central directory header.

    Args:
        buffer: Archive contents.
        offset: Offset of the header's signature.

    Returns:
        CentralDirectoryHeader object.

    Raises:
        ZipFormatError: If the signature is invalid or the buffer is truncated.
    """
    _require(buffer, offset, CENTRAL_DIR_HEADER_SIZE, "Central directory header")
    _check_signature(buffer, offset, CENTRAL_DIR_HEADER, "central directory header")

    return CentralDirectoryHeader(
        offset=offset,
        version_made_by=get_u16(buffer, offset + 4),
        version=get_u16(buffer, offset + 6),
        flags=get_u16(buffer, offset + 8),
        compression_method=get_u16(buffer, offset + 10),
        mod_time=get_u32(buffer, offset + 12),
        crc32=get_u32(buffer, offset + 16),
        compressed_size=get_u32(buffer, offset + 20),
        uncompressed_size=get_u32(buffer, offset + 24),
        filename_len=get_u16(buffer, offset + 28),
        extra_len=get_u16(buffer, offset + 30),
        comment_len=get_u16(buffer, offset + 32),
        disk_num=get_u16(buffer, offset + 34),
        internal_attrs=get_u16(buffer, offset + 36),
        external_attrs=get_u32(buffer, offset + 38),
        local_header_offset=get_u32(buffer, offset + 42),
    )


def parse_eocd(buffer, offset: int) -> EndOfCentralDirectory:
    """Parse an End of Central Directory record (without its comment).

    Raises:
        ZipFormatError: If the signature is invalid or the buffer is truncated.
    """
    _require(buffer, offset, END_OF_CENTRAL_DIR_SIZE, "End of central directory record")
    _check_signature(buffer, offset, END_OF_CENTRAL_DIR, "EOCD")

    return EndOfCentralDirectory(
        offset=offset,
        disk_num=get_u16(buffer, offset + 4),
        cd_disk=get_u16(buffer, offset + 6),
        cd_records_on_disk=get_u16(buffer, offset + 8),
        cd_records_total=get_u16(buffer, offset + 10),
        cd_size=get_u32(buffer, offset + 12),
        cd_offset=get_u32(buffer, offset + 16),
        comment_len=get_u16(buffer, offset + 20),
    )


def parse_zip64_eocd(buffer, offset: int) -> Zip64EndOfCentralDirectory:
    """Parse a ZIP64 End of Central Directory record.

    Raises:
        ZipFormatError: If the signature is invalid, the size field is too
            small for the fixed fields, or the buffer is truncated.
    """
    _require(buffer, offset, ZIP64_END_OF_CENTRAL_DIR_SIZE, "ZIP64 end of central directory record")
    _check_signature(buffer, offset, ZIP64_END_OF_CENTRAL_DIR, "ZIP64 EOCD")

    size = get_u64(buffer, offset + 4)
    if size < ZIP64_END_OF_CENTRAL_DIR_SIZE - ZIP64_END_OF_CENTRAL_DIR_LEADING:
        raise ZipFormatError(f"Invalid ZIP64 EOCD size field: {size}")

    return Zip64EndOfCentralDirectory(
        offset=offset,
        size=size,
        version_made_by=get_u16(buffer, offset + 12),
        version_needed=get_u16(buffer, offset + 14),
        disk_num=get_u32(buffer, offset + 16),
        cd_disk=get_u32(buffer, offset + 20),
        cd_records_on_disk=get_u64(buffer, offset + 24),
        cd_records_total=get_u64(buffer, offset + 32),
        cd_size=get_u64(buffer, offset + 40),
        cd_offset=get_u64(buffer, offset + 48),
    )


def parse_zip64_locator(buffer, offset: int) -> Zip64Locator:
    """Parse a ZIP64 locator.

    Raises:
        ZipFormatError: If the signature is invalid or the buffer is truncated.
    """
    _require(buffer, offset, ZIP64_LOCATOR_SIZE, "ZIP64 locator")
    _check_signature(buffer, offset, ZIP64_END_OF_CENTRAL_DIR_LOCATOR, "ZIP64 locator")

    return Zip64Locator(
        offset=offset,
        disk_num=get_u32(buffer, offset + 4),
        zip64_eocd_offset=get_u64(buffer, offset + 8),
        total_disks=get_u32(buffer, offset + 16),
    )


def split_extra_records(extra_data: bytes):
    """Split an extra field blob into ``(tag, start, end)`` records.

    ``start``/``end`` delimit the record's payload within ``extra_data``.
    Returns None if the blob is not a well-formed sequence of records; such
    blobs are treated as opaque.
    """
    records = []
    pos = 0
    while pos < len(extra_data):
        if pos + 4 > len(extra_data):
            return None
        tag, size = struct.unpack_from("<HH", extra_data, pos)
        pos += 4
        if pos + size > len(extra_data):
            return None
        records.append((tag, pos, pos + size))
        pos += size
    return records


def split_zip64_extra_field(extra_data: bytes) -> tuple[Optional[bytes], bytes]:
    """Separate the ZIP64 record from the other extra field records.

    Args:
        extra_data: Raw extra field bytes.

    Returns:
        Tuple of (ZIP64 record payload or None, remaining extra bytes).
    """
    records = split_extra_records(extra_data)
    if not records:
        return None, bytes(extra_data)

    payload = None
    remaining = bytearray()
    for tag, start, end in records:
        if tag == ZIP64_EXTRA_FIELD_TAG and payload is None:
            payload = bytes(extra_data[start:end])
        else:
            remaining += extra_data[start - 4 : end]
    return payload, bytes(remaining)


def parse_zip64_extra_field(
    payload: bytes,
    need_original: bool,
    need_compressed: bool,
    need_offset: bool,
) -> Zip64ExtraField:
    """Decode the values of a ZIP64 extra record.

    The record holds, in order, only those values whose 32-bit header field
    was saturated: original size, compressed size, local header offset.

    Raises:
        ZipFormatError: If the record is too short for the requested values.
    """
    zip64_extra = Zip64ExtraField()
    pos = 0

    for name, needed in (
        ("original_size", need_original),
        ("compressed_size", need_compressed),
        ("local_header_offset", need_offset),
    ):
        if not needed:
            continue
        if pos + 8 > len(payload):
            raise ZipFormatError(f"ZIP64 extra field too short: missing {name.replace('_', ' ')}")
        setattr(zip64_extra, name, struct.unpack_from("<Q", payload, pos)[0])
        pos += 8

    if pos + 4 <= len(payload):
        zip64_extra.disk_start = struct.unpack_from("<I", payload, pos)[0]

    return zip64_extra


def build_zip64_extra_field(
    original_size: Optional[int] = None,
    compressed_size: Optional[int] = None,
    local_header_offset: Optional[int] = None,
) -> bytes:
    """Build a ZIP64 extra record holding the given values.

    Returns:
        The record (tag, size and payload), or ``b""`` when no value is given.
    """
    field_data = bytearray()
    for value in (original_size, compressed_size, local_header_offset):
        if value is not None:
            field_data += struct.pack("<Q", value)

    if not field_data:
        return b""
    return struct.pack("<HH", ZIP64_EXTRA_FIELD_TAG, len(field_data)) + bytes(field_data)


def is_saturated(value: int) -> bool:
    """Whether a 32-bit header field defers to the ZIP64 extra record."""
    return value == ZIP64_SENTINEL_32
