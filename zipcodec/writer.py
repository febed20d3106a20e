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
ZIP archive serialization.

The writer lays out the whole archive before emitting anything: sizes of
every record are known once each member's data is compressed, so offsets are
computed up front, ZIP64 is decided, and a buffer of the exact final size is
filled in a single pass.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .compression import compress_member_data
from .constants import (
    CENTRAL_DIR_HEADER,
    CENTRAL_DIR_HEADER_SIZE,
    DEFAULT_COMPRESSION_LEVEL,
    END_OF_CENTRAL_DIR,
    END_OF_CENTRAL_DIR_SIZE,
    FLAG_DATA_DESCRIPTOR,
    FLAG_UTF8,
    LOCAL_FILE_HEADER,
    LOCAL_FILE_HEADER_SIZE,
    MAX_FIELD_LENGTH,
    MAX_LEGACY_ENTRIES,
    MAX_LEGACY_SIZE,
    VERSION_ZIP64,
    ZIP64_END_OF_CENTRAL_DIR,
    ZIP64_END_OF_CENTRAL_DIR_LEADING,
    ZIP64_END_OF_CENTRAL_DIR_LOCATOR,
    ZIP64_END_OF_CENTRAL_DIR_SIZE,
    ZIP64_LOCATOR_SIZE,
    ZIP64_SENTINEL_16,
    ZIP64_SENTINEL_32,
)
from .errors import ZipLimitExceeded
from .member import ArchiveMember
from .structures import build_zip64_extra_field, split_zip64_extra_field
from .utils import crc32, encode_text, put_u16, put_u32, put_u64

logger = logging.getLogger(__name__)


@dataclass
class _EntryLayout:
    """Encoded fields and position of one member in the output."""

    member: ArchiveMember
    name: bytes
    comment: bytes
    flags: int
    extract_version: int
    local_extra: bytes
    offset: int
    sizes_need_zip64: bool
    central_extra: bytes = b""
    central_uses_zip64: bool = False

    @property
    def local_size(self) -> int:
        return LOCAL_FILE_HEADER_SIZE + len(self.name) + len(self.local_extra) + self.member.compressed_size

    @property
    def central_size(self) -> int:
        return CENTRAL_DIR_HEADER_SIZE + len(self.name) + len(self.central_extra) + len(self.comment)


@dataclass
class BuildResult:
    """Output of ``build_archive``."""

    data: bytes
    is_zip64: bool
    cd_offset: int
    cd_size: int
    num_entries: int


def _check_length(what: str, value: bytes) -> None:
    if len(value) > MAX_FIELD_LENGTH:
        raise ZipLimitExceeded(f"{what} is {len(value)} bytes long (max {MAX_FIELD_LENGTH})")


def _prepare_member_data(member: ArchiveMember, level: int) -> None:
    """Compress the member if it has no compressed form yet."""
    if member.compressed_data is not None:
        return
    data = member.expanded_data if member.expanded_data is not None else b""
    compressed = compress_member_data(member.compression_method, data, level)
    member._set_compressed(compressed, crc32(data), len(data))


def _layout_entries(members: list[ArchiveMember]) -> tuple[list[_EntryLayout], int, int]:
    """Compute every entry's encoded fields and offset.

    Returns:
        Tuple of (layouts, central directory offset, central directory size).
    """
    layouts = []
    offset = 0

    for member in members:
        name, name_utf8 = encode_text(member.name)
        comment, comment_utf8 = encode_text(member.comment)
        _check_length(f"Name of entry '{member.name}'", name)
        _check_length(f"Comment of entry '{member.name}'", comment)

        flags = member.flags & ~FLAG_DATA_DESCRIPTOR
        if name_utf8 or comment_utf8:
            flags |= FLAG_UTF8

        # Any stale ZIP64 record is replaced by one matching this layout
        _, extra = split_zip64_extra_field(member.extra)

        sizes_need_zip64 = member.compressed_size > MAX_LEGACY_SIZE or member.expanded_size > MAX_LEGACY_SIZE
        local_extra = extra
        if sizes_need_zip64:
            local_extra = build_zip64_extra_field(member.expanded_size, member.compressed_size) + extra
        _check_length(f"Extra field of entry '{member.name}'", local_extra)

        layout = _EntryLayout(
            member=member,
            name=name,
            comment=comment,
            flags=flags,
            extract_version=member.extract_version,
            local_extra=local_extra,
            offset=offset,
            sizes_need_zip64=sizes_need_zip64,
        )
        layouts.append(layout)
        offset += layout.local_size

    cd_offset = offset
    cd_size = 0

    for layout in layouts:
        member = layout.member
        offset_needs_zip64 = layout.offset > MAX_LEGACY_SIZE
        _, extra = split_zip64_extra_field(member.extra)

        if layout.sizes_need_zip64 or offset_needs_zip64:
            zip64_extra = build_zip64_extra_field(
                member.expanded_size if layout.sizes_need_zip64 else None,
                member.compressed_size if layout.sizes_need_zip64 else None,
                layout.offset if offset_needs_zip64 else None,
            )
            layout.central_extra = zip64_extra + extra
            layout.central_uses_zip64 = True
            layout.extract_version = max(layout.extract_version, VERSION_ZIP64)
        else:
            layout.central_extra = extra
        _check_length(f"Extra field of entry '{member.name}'", layout.central_extra)

        cd_size += layout.central_size

    return layouts, cd_offset, cd_size


def _write_local_file_header(buffer: bytearray, layout: _EntryLayout) -> int:
    """Write a local file header followed by the entry's compressed data.

    Returns:
        Offset just past the written data.
    """
    member = layout.member
    i = layout.offset

    put_u32(buffer, i, LOCAL_FILE_HEADER)
    put_u16(buffer, i + 4, layout.extract_version)
    put_u16(buffer, i + 6, layout.flags)
    put_u16(buffer, i + 8, member.compression_method)
    put_u32(buffer, i + 10, member.modification_time)
    put_u32(buffer, i + 14, member.crc32)
    # Sizes may be 0xFFFFFFFF for ZIP64
    put_u32(buffer, i + 18, ZIP64_SENTINEL_32 if layout.sizes_need_zip64 else member.compressed_size)
    put_u32(buffer, i + 22, ZIP64_SENTINEL_32 if layout.sizes_need_zip64 else member.expanded_size)
    put_u16(buffer, i + 26, len(layout.name))
    put_u16(buffer, i + 28, len(layout.local_extra))
    i += LOCAL_FILE_HEADER_SIZE

    buffer[i : i + len(layout.name)] = layout.name
    i += len(layout.name)
    buffer[i : i + len(layout.local_extra)] = layout.local_extra
    i += len(layout.local_extra)
    buffer[i : i + member.compressed_size] = member.compressed_data
    i += member.compressed_size

    return i


def _write_central_directory_header(buffer: bytearray, i: int, layout: _EntryLayout) -> int:
    """Write one central directory header.

    Returns:
        Offset just past the written header.
    """
    member = layout.member
    offset_saturated = layout.offset > MAX_LEGACY_SIZE

    put_u32(buffer, i, CENTRAL_DIR_HEADER)
    put_u16(buffer, i + 4, member.made_version)
    put_u16(buffer, i + 6, layout.extract_version)
    put_u16(buffer, i + 8, layout.flags)
    put_u16(buffer, i + 10, member.compression_method)
    put_u32(buffer, i + 12, member.modification_time)
    put_u32(buffer, i + 16, member.crc32)
    put_u32(buffer, i + 20, ZIP64_SENTINEL_32 if layout.sizes_need_zip64 else member.compressed_size)
    put_u32(buffer, i + 24, ZIP64_SENTINEL_32 if layout.sizes_need_zip64 else member.expanded_size)
    put_u16(buffer, i + 28, len(layout.name))
    put_u16(buffer, i + 30, len(layout.central_extra))
    put_u16(buffer, i + 32, len(layout.comment))
    put_u16(buffer, i + 34, 0)  # Disk number (single-disk archives only)
    put_u16(buffer, i + 36, member.internal_attributes)
    put_u32(buffer, i + 38, member.external_attributes)
    put_u32(buffer, i + 42, ZIP64_SENTINEL_32 if offset_saturated else layout.offset)
    i += CENTRAL_DIR_HEADER_SIZE

    for chunk in (layout.name, layout.central_extra, layout.comment):
        buffer[i : i + len(chunk)] = chunk
        i += len(chunk)

    return i


def _write_zip64_eocd(buffer: bytearray, i: int, num_entries: int, cd_offset: int, cd_size: int) -> int:
    """Write the ZIP64 End of Central Directory record."""
    put_u32(buffer, i, ZIP64_END_OF_CENTRAL_DIR)
    # Size of the record, excluding signature and size field
    put_u64(buffer, i + 4, ZIP64_END_OF_CENTRAL_DIR_SIZE - ZIP64_END_OF_CENTRAL_DIR_LEADING)
    put_u16(buffer, i + 12, VERSION_ZIP64)  # Version made by
    put_u16(buffer, i + 14, VERSION_ZIP64)  # Version needed to extract
    put_u32(buffer, i + 16, 0)  # Number of this disk
    put_u32(buffer, i + 20, 0)  # Disk with start of central directory
    put_u64(buffer, i + 24, num_entries)  # Entries on this disk
    put_u64(buffer, i + 32, num_entries)  # Total entries
    put_u64(buffer, i + 40, cd_size)
    put_u64(buffer, i + 48, cd_offset)
    return i + ZIP64_END_OF_CENTRAL_DIR_SIZE


def _write_zip64_locator(buffer: bytearray, i: int, zip64_eocd_offset: int) -> int:
    """Write the ZIP64 End of Central Directory Locator."""
    put_u32(buffer, i, ZIP64_END_OF_CENTRAL_DIR_LOCATOR)
    put_u32(buffer, i + 4, 0)  # Disk with the ZIP64 EOCD
    put_u64(buffer, i + 8, zip64_eocd_offset)
    put_u32(buffer, i + 16, 1)  # Total number of disks
    return i + ZIP64_LOCATOR_SIZE


def _write_eocd(
    buffer: bytearray, i: int, num_entries: int, cd_offset: int, cd_size: int, comment: bytes, is_zip64: bool
) -> int:
    """Write the End of Central Directory record and the archive comment.

    With ZIP64 the count, size and offset fields hold the sentinels and
    readers take the values from the ZIP64 record.
    """
    put_u32(buffer, i, END_OF_CENTRAL_DIR)
    put_u16(buffer, i + 4, 0)  # Number of this disk
    put_u16(buffer, i + 6, 0)  # Disk with start of central directory
    put_u16(buffer, i + 8, ZIP64_SENTINEL_16 if is_zip64 else num_entries)
    put_u16(buffer, i + 10, ZIP64_SENTINEL_16 if is_zip64 else num_entries)
    put_u32(buffer, i + 12, ZIP64_SENTINEL_32 if is_zip64 else cd_size)
    put_u32(buffer, i + 16, ZIP64_SENTINEL_32 if is_zip64 else cd_offset)
    put_u16(buffer, i + 20, len(comment))
    i += END_OF_CENTRAL_DIR_SIZE

    buffer[i : i + len(comment)] = comment
    return i + len(comment)


def build_archive(
    members: list[ArchiveMember],
    comment: str = "",
    zip64: Optional[bool] = None,
    level: int = DEFAULT_COMPRESSION_LEVEL,
) -> BuildResult:
    """Serialize members, in the given order, into a complete archive.

    Members without compressed data are compressed first; the others are
    written with their existing compressed data, CRC32 and sizes. Each
    member's ``local_header_offset`` is updated to its position in the output.

    Args:
        members: Members in output order.
        comment: Archive comment.
        zip64: True to always write ZIP64 records, False to forbid them,
            None to write them only when a count, size or offset needs it.
        level: zlib compression level for deflated members.

    Returns:
        BuildResult object.

    Raises:
        ZipLimitExceeded: If a comment, name or extra field is too long, or
            ZIP64 is needed but forbidden. Raised before output is allocated.
        ZipUnsupportedFeature: If a member's compression method is not supported.
    """
    comment_bytes, _ = encode_text(comment)
    _check_length("Archive comment", comment_bytes)

    for member in members:
        _prepare_member_data(member, level)

    layouts, cd_offset, cd_size = _layout_entries(members)
    num_entries = len(layouts)

    needs_zip64 = (
        num_entries > MAX_LEGACY_ENTRIES
        or cd_offset > MAX_LEGACY_SIZE
        or cd_size > MAX_LEGACY_SIZE
        or any(layout.central_uses_zip64 for layout in layouts)
    )
    if needs_zip64 and zip64 is False:
        raise ZipLimitExceeded(
            f"Archive needs ZIP64 ({num_entries} entries, central directory of {cd_size} bytes "
            f"at offset {cd_offset}) but ZIP64 output is disabled"
        )
    is_zip64 = needs_zip64 or bool(zip64)

    total_size = cd_offset + cd_size + END_OF_CENTRAL_DIR_SIZE + len(comment_bytes)
    if is_zip64:
        total_size += ZIP64_END_OF_CENTRAL_DIR_SIZE + ZIP64_LOCATOR_SIZE

    logger.debug(
        "Building %d entries into %d bytes%s", num_entries, total_size, " (ZIP64)" if is_zip64 else ""
    )

    buffer = bytearray(total_size)

    for layout in layouts:
        _write_local_file_header(buffer, layout)

    i = cd_offset
    for layout in layouts:
        i = _write_central_directory_header(buffer, i, layout)

    if is_zip64:
        zip64_eocd_offset = i
        i = _write_zip64_eocd(buffer, i, num_entries, cd_offset, cd_size)
        i = _write_zip64_locator(buffer, i, zip64_eocd_offset)

    _write_eocd(buffer, i, num_entries, cd_offset, cd_size, comment_bytes, is_zip64)

    data = bytes(buffer)
    view = memoryview(data)

    # Members now describe, and point into, the archive just written
    for layout in layouts:
        member = layout.member
        member.local_header_offset = layout.offset
        member.flags = layout.flags
        member.extract_version = layout.extract_version
        data_offset = layout.offset + LOCAL_FILE_HEADER_SIZE + len(layout.name) + len(layout.local_extra)
        member._set_compressed(
            view[data_offset : data_offset + member.compressed_size], member.crc32, member.expanded_size
        )

    return BuildResult(
        data=data,
        is_zip64=is_zip64,
        cd_offset=cd_offset,
        cd_size=cd_size,
        num_entries=num_entries,
    )
