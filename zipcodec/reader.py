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
ZIP archive parsing.

This module turns an in-memory archive into its end record and a list of
ArchiveMember objects, and expands individual members on demand.

The input is treated as hostile. Every record that is accepted claims its
bytes in a SegmentTracker, so no two records (or a record and an entry's
data) can share bytes, and the end of central directory record must be
unambiguous.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .compression import decompress_member_data
from .constants import (
    CENTRAL_DIR_HEADER_SIZE,
    END_OF_CENTRAL_DIR,
    END_OF_CENTRAL_DIR_SIZE,
    EOCD_SCAN_POSITIONS,
    FLAG_DATA_DESCRIPTOR,
    FLAG_ENCRYPTED,
    FLAG_STRONG_ENCRYPTION,
    LOCAL_FILE_HEADER_SIZE,
    ZIP64_END_OF_CENTRAL_DIR,
    ZIP64_END_OF_CENTRAL_DIR_LOCATOR,
    ZIP64_END_OF_CENTRAL_DIR_SIZE,
    ZIP64_LOCATOR_SIZE,
    ZIP64_SENTINEL_16,
    ZIP64_SENTINEL_32,
)
from .errors import ZipCrcError, ZipFormatError, ZipUnsupportedFeature
from .member import ArchiveMember
from .segments import SegmentTracker
from .structures import (
    CentralDirectoryHeader,
    EndOfCentralDirectory,
    Zip64EndOfCentralDirectory,
    Zip64Locator,
    is_saturated,
    parse_central_directory_header,
    parse_eocd,
    parse_local_file_header,
    parse_zip64_eocd,
    parse_zip64_extra_field,
    parse_zip64_locator,
    split_zip64_extra_field,
)
from .utils import crc32, decode_text, get_u16, get_u32

logger = logging.getLogger(__name__)


@dataclass
class DirectoryLocation:
    """Where the central directory lives, as resolved from the end records.

    When a ZIP64 record is present its 64-bit values take precedence over the
    legacy ones.
    """

    eocd: EndOfCentralDirectory
    zip64_locator: Optional[Zip64Locator]
    zip64_eocd: Optional[Zip64EndOfCentralDirectory]
    num_entries: int
    total_entries: int
    cd_size: int
    cd_offset: int

    @property
    def is_zip64(self) -> bool:
        return self.zip64_eocd is not None

    @property
    def tail_offset(self) -> int:
        """Offset of the first end record; entry data must end before it."""
        if self.zip64_eocd is not None:
            return self.zip64_eocd.offset
        return self.eocd.offset


@dataclass
class ParsedArchive:
    """Result of a successful parse."""

    location: DirectoryLocation
    comment: bytes
    members: list[ArchiveMember]


def _legacy_agrees(legacy: int, sentinel: int, value: int) -> bool:
    return legacy == sentinel or legacy == value


def _resolve_zip64(buffer, eocd: EndOfCentralDirectory) -> Optional[DirectoryLocation]:
    """Follow the ZIP64 locator preceding ``eocd``, if that is a consistent structure.

    Returns:
        DirectoryLocation, or None if the locator or the record it points to
        is not valid for this candidate.
    """
    locator_offset = eocd.offset - ZIP64_LOCATOR_SIZE
    locator = parse_zip64_locator(buffer, locator_offset)
    if locator.disk_num != 0 or locator.total_disks > 1:
        return None

    zip64_offset = locator.zip64_eocd_offset
    if zip64_offset + ZIP64_END_OF_CENTRAL_DIR_SIZE > locator_offset:
        return None
    if get_u32(buffer, zip64_offset) != ZIP64_END_OF_CENTRAL_DIR:
        return None

    try:
        zip64_eocd = parse_zip64_eocd(buffer, zip64_offset)
    except ZipFormatError:
        return None

    if zip64_eocd.end > locator_offset:
        return None
    if zip64_eocd.disk_num != 0 or zip64_eocd.cd_disk != 0:
        return None
    if zip64_eocd.cd_offset + zip64_eocd.cd_size > zip64_offset:
        return None

    # Legacy fields must either defer to ZIP64 or repeat its values
    if not (
        _legacy_agrees(eocd.cd_records_on_disk, ZIP64_SENTINEL_16, zip64_eocd.cd_records_on_disk)
        and _legacy_agrees(eocd.cd_records_total, ZIP64_SENTINEL_16, zip64_eocd.cd_records_total)
        and _legacy_agrees(eocd.cd_size, ZIP64_SENTINEL_32, zip64_eocd.cd_size)
        and _legacy_agrees(eocd.cd_offset, ZIP64_SENTINEL_32, zip64_eocd.cd_offset)
    ):
        return None

    return DirectoryLocation(
        eocd=eocd,
        zip64_locator=locator,
        zip64_eocd=zip64_eocd,
        num_entries=zip64_eocd.cd_records_on_disk,
        total_entries=zip64_eocd.cd_records_total,
        cd_size=zip64_eocd.cd_size,
        cd_offset=zip64_eocd.cd_offset,
    )


def _validate_eocd_candidate(buffer, eocd: EndOfCentralDirectory) -> Optional[DirectoryLocation]:
    """Cross-check an EOCD candidate that ends exactly at the end of the buffer."""
    has_locator = (
        eocd.offset >= ZIP64_LOCATOR_SIZE
        and get_u32(buffer, eocd.offset - ZIP64_LOCATOR_SIZE) == ZIP64_END_OF_CENTRAL_DIR_LOCATOR
    )
    if has_locator:
        location = _resolve_zip64(buffer, eocd)
        if location is not None:
            return location

    # Without a usable ZIP64 locator only a plain legacy record is acceptable
    saturated = (
        eocd.cd_records_on_disk == ZIP64_SENTINEL_16
        or eocd.cd_records_total == ZIP64_SENTINEL_16
        or eocd.cd_size == ZIP64_SENTINEL_32
        or eocd.cd_offset == ZIP64_SENTINEL_32
    )
    if saturated:
        return None
    if eocd.cd_offset + eocd.cd_size > eocd.offset:
        return None

    return DirectoryLocation(
        eocd=eocd,
        zip64_locator=None,
        zip64_eocd=None,
        num_entries=eocd.cd_records_on_disk,
        total_entries=eocd.cd_records_total,
        cd_size=eocd.cd_size,
        cd_offset=eocd.cd_offset,
    )


def find_end_of_central_directory(buffer, segments: SegmentTracker) -> DirectoryLocation:
    """Find the one valid End of Central Directory record.

    The EOCD is 22 bytes followed by a comment of up to 65535 bytes, so every
    start offset in the last 65557 bytes is a candidate. A candidate is valid
    when it is single-disk, its comment ends exactly at the end of the buffer
    and the directory it describes (directly or through ZIP64 records) lies
    before it. A buffer with more than one valid candidate is rejected, as
    different readers would disagree on its contents.

    The accepted end records are claimed in ``segments``.

    Returns:
        DirectoryLocation object.

    Raises:
        ZipFormatError: If no valid EOCD exists, or more than one does.
        ZipUnsupportedFeature: If the only well-formed EOCD is for a
            multi-disk archive.
    """
    size = len(buffer)
    found: list[DirectoryLocation] = []
    multi_disk = False

    for back in range(EOCD_SCAN_POSITIONS):
        start = size - END_OF_CENTRAL_DIR_SIZE - back
        if start < 0:
            break
        if get_u32(buffer, start) != END_OF_CENTRAL_DIR:
            continue

        eocd = parse_eocd(buffer, start)
        if eocd.end != size:
            continue
        if eocd.disk_num != 0 or eocd.cd_disk != 0:
            multi_disk = True
            continue

        location = _validate_eocd_candidate(buffer, eocd)
        if location is not None:
            found.append(location)

    if len(found) > 1:
        offsets = ", ".join(f"0x{location.eocd.offset:08X}" for location in found)
        raise ZipFormatError(f"Found more than one valid End of Central Directory record (at {offsets})")
    if not found:
        if multi_disk:
            raise ZipUnsupportedFeature("Multi-disk archives are not supported")
        raise ZipFormatError("End of Central Directory record not found")

    location = found[0]
    segments.claim(location.eocd.offset, location.eocd.end)
    if location.zip64_eocd is not None:
        segments.claim(location.zip64_locator.offset, location.zip64_locator.offset + ZIP64_LOCATOR_SIZE)
        segments.claim(location.zip64_eocd.offset, location.zip64_eocd.end)

    if location.num_entries != location.total_entries:
        raise ZipUnsupportedFeature(
            f"Multi-disk archives are not supported: {location.num_entries} entries on this disk, "
            f"{location.total_entries} in total"
        )

    logger.debug(
        "EOCD at 0x%08X%s: %d entries, central directory at 0x%08X (%d bytes)",
        location.eocd.offset,
        " (ZIP64)" if location.is_zip64 else "",
        location.num_entries,
        location.cd_offset,
        location.cd_size,
    )
    return location


def _member_from_header(
    header: CentralDirectoryHeader, raw_name: bytes, raw_extra: bytes, raw_comment: bytes, index: int
) -> ArchiveMember:
    """Build a member from a central directory header, resolving ZIP64 values."""
    compressed_size = header.compressed_size
    uncompressed_size = header.uncompressed_size
    local_header_offset = header.local_header_offset

    zip64_payload, extra = split_zip64_extra_field(raw_extra)
    need_original = is_saturated(uncompressed_size)
    need_compressed = is_saturated(compressed_size)
    need_offset = is_saturated(local_header_offset)

    if need_original or need_compressed or need_offset:
        if zip64_payload is None:
            raise ZipFormatError(f"Central directory header at 0x{header.offset:08X} lacks its ZIP64 extra field")
        zip64_extra = parse_zip64_extra_field(zip64_payload, need_original, need_compressed, need_offset)
        if need_original:
            uncompressed_size = zip64_extra.original_size
        if need_compressed:
            compressed_size = zip64_extra.compressed_size
        if need_offset:
            local_header_offset = zip64_extra.local_header_offset

    member = ArchiveMember(
        decode_text(raw_name, header.flags),
        compression_method=header.compression_method,
        index=index,
        comment=decode_text(raw_comment, header.flags),
        extra=extra,
        flags=header.flags,
        internal_attributes=header.internal_attrs,
        external_attributes=header.external_attrs,
        made_version=header.version_made_by,
        extract_version=header.version,
    )
    member.modification_time = header.mod_time
    member.disk_number = header.disk_num
    member.local_header_offset = local_header_offset
    member.compressed_size = compressed_size
    member.expanded_size = uncompressed_size
    member.crc32 = header.crc32
    return member


def parse_central_directory(
    buffer, location: DirectoryLocation, segments: SegmentTracker
) -> list[ArchiveMember]:
    """Parse every central directory header and locate each entry's data.

    Each header, its variable-length fields, and the span from the entry's
    local header to the end of its compressed data are claimed in
    ``segments``. Only the name and extra lengths of the local header are
    read here; ``expand_member`` validates the rest.

    Returns:
        ArchiveMember objects in directory order.

    Raises:
        ZipFormatError: If a header is invalid, a length or offset points
            outside its bounds, or the directory size does not match.
        ZipOverlapError: If two records share bytes.
        ZipUnsupportedFeature: If an entry lives on another disk.
    """
    view = memoryview(buffer)
    cd_offset = location.cd_offset
    cd_end = cd_offset + location.cd_size
    num_entries = location.num_entries

    # Reasonable limit: each entry needs at least a fixed header
    if num_entries * CENTRAL_DIR_HEADER_SIZE > location.cd_size:
        raise ZipFormatError(
            f"Entry count too large: {num_entries} entries cannot fit in a {location.cd_size} byte directory"
        )

    members = []
    cursor = cd_offset

    for index in range(num_entries):
        if cursor + CENTRAL_DIR_HEADER_SIZE > cd_end:
            raise ZipFormatError(f"Central directory header at 0x{cursor:08X} extends beyond the directory")

        header = parse_central_directory_header(buffer, cursor)
        segments.claim(cursor, cursor + CENTRAL_DIR_HEADER_SIZE)
        cursor += CENTRAL_DIR_HEADER_SIZE

        if cursor + header.variable_length > cd_end:
            raise ZipFormatError(
                f"Invalid field lengths in central directory header at 0x{header.offset:08X}"
            )
        if header.variable_length:
            segments.claim(cursor, cursor + header.variable_length)

        raw_name = bytes(view[cursor : cursor + header.filename_len])
        cursor += header.filename_len
        raw_extra = bytes(view[cursor : cursor + header.extra_len])
        cursor += header.extra_len
        raw_comment = bytes(view[cursor : cursor + header.comment_len])
        cursor += header.comment_len

        if header.disk_num != 0:
            raise ZipUnsupportedFeature(f"Entry at 0x{header.offset:08X} starts on disk {header.disk_num}")

        member = _member_from_header(header, raw_name, raw_extra, raw_comment, index)

        local_offset = member.local_header_offset
        if local_offset + LOCAL_FILE_HEADER_SIZE > len(buffer):
            raise ZipFormatError(
                f"Invalid local header offset for entry '{member.name}': 0x{local_offset:08X} "
                f"(archive size: {len(buffer)})"
            )
        local_name_len = get_u16(buffer, local_offset + 26)
        local_extra_len = get_u16(buffer, local_offset + 28)

        data_offset = local_offset + LOCAL_FILE_HEADER_SIZE + local_name_len + local_extra_len
        data_end = data_offset + member.compressed_size
        if data_end > len(buffer):
            raise ZipFormatError(
                f"Compressed data extends beyond archive for entry '{member.name}': "
                f"offset 0x{data_offset:08X}, size {member.compressed_size} (archive size: {len(buffer)})"
            )
        segments.claim(local_offset, data_end)

        member._set_compressed(view[data_offset:data_end], member.crc32, member.expanded_size)
        members.append(member)

    if cursor != cd_end:
        raise ZipFormatError(
            f"Central directory size mismatch: entries end at 0x{cursor:08X}, "
            f"expected 0x{cd_end:08X}"
        )

    return members


def read_archive(buffer) -> ParsedArchive:
    """Parse a complete archive.

    Args:
        buffer: The whole archive.

    Returns:
        ParsedArchive object.

    Raises:
        ZipFormatError, ZipOverlapError, ZipUnsupportedFeature: If the archive
            cannot be parsed; no partial result is produced.
    """
    segments = SegmentTracker(len(buffer))
    location = find_end_of_central_directory(buffer, segments)
    comment_start = location.eocd.offset + END_OF_CENTRAL_DIR_SIZE
    comment = bytes(buffer[comment_start : location.eocd.end])
    members = parse_central_directory(buffer, location, segments)
    logger.debug("Parsed %d entries from %d byte archive", len(members), len(buffer))
    return ParsedArchive(location=location, comment=comment, members=members)


def _check_local_field(member: ArchiveMember, field: str, local_value: int, central_value: int) -> None:
    if local_value != central_value:
        raise ZipFormatError(
            f"Local header of entry '{member.name}' disagrees with the central directory on {field}: "
            f"{local_value} != {central_value}"
        )


def expand_member(buffer, member: ArchiveMember, data_limit: int) -> bytes:
    """Decompress a member's data from the archive buffer.

    The local header is re-read and checked against the directory values
    before the data is touched, and the result is checked against the
    recorded size and CRC32.

    Args:
        buffer: The archive the member was parsed from (or built into).
        member: The member to expand.
        data_limit: Offset the entry's data must end at or before.

    Returns:
        Decompressed data as bytes.

    Raises:
        ZipFormatError: If the local header is invalid or disagrees with the
            central directory, or the expanded size is wrong.
        ZipUnsupportedFeature: If the entry is encrypted or its compression
            method is not supported.
        ZipCrcError: If CRC32 validation fails.
    """
    local = parse_local_file_header(buffer, member.local_header_offset)

    _check_local_field(member, "version needed to extract", local.version, member.extract_version)
    _check_local_field(member, "flags", local.flags, member.flags)
    _check_local_field(member, "compression method", local.compression_method, member.compression_method)
    _check_local_field(member, "modification time", local.mod_time, member.modification_time)

    # With a data descriptor the local header carries zeros instead of these
    if not local.flags & FLAG_DATA_DESCRIPTOR:
        _check_local_field(member, "CRC32", local.crc32, member.crc32)
        if not is_saturated(local.compressed_size):
            _check_local_field(member, "compressed size", local.compressed_size, member.compressed_size)
        if not is_saturated(local.uncompressed_size):
            _check_local_field(member, "uncompressed size", local.uncompressed_size, member.expanded_size)

    if member.flags & (FLAG_ENCRYPTED | FLAG_STRONG_ENCRYPTION):
        raise ZipUnsupportedFeature(f"Entry '{member.name}' is encrypted (encryption not supported)")

    data_offset = local.data_offset
    data_end = data_offset + member.compressed_size
    if data_end > data_limit:
        raise ZipFormatError(
            f"Compressed data of entry '{member.name}' runs into the central directory: "
            f"ends at 0x{data_end:08X}, limit 0x{data_limit:08X}"
        )

    compressed = memoryview(buffer)[data_offset:data_end]
    data = decompress_member_data(member.compression_method, compressed, member.expanded_size)

    if len(data) != member.expanded_size:
        raise ZipFormatError(
            f"Entry '{member.name}' expanded to {len(data)} bytes, expected {member.expanded_size}"
        )

    actual_crc = crc32(data)
    if actual_crc != member.crc32:
        raise ZipCrcError(
            f"CRC32 mismatch for entry '{member.name}': expected 0x{member.crc32:08X}, got 0x{actual_crc:08X}"
        )

    return data
