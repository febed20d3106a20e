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
In-memory ZIP archive.

This module provides the ZipArchive class, which either parses an existing
archive buffer or collects members and serializes them into a new one.
"""

import logging
from types import MappingProxyType
from typing import Mapping, Optional

from .constants import DEFAULT_COMPRESSION_LEVEL
from .errors import ZipError
from .member import ArchiveMember
from .reader import expand_member, read_archive
from .utils import decode_text
from .writer import build_archive

logger = logging.getLogger(__name__)


class ZipArchive:
    """A ZIP or ZIP64 archive held in memory.

    Constructed without data, the archive starts empty and is filled with
    ``add_member``. Constructed from bytes, the whole archive is parsed
    immediately; member contents are decompressed only when expanded.
    Either way ``build`` serializes the current members into a new buffer.

    Example:
        archive = ZipArchive()
        archive.add_member(ArchiveMember("hello.txt", b"Hello, World!"))
        data = archive.build()

        parsed = ZipArchive(data)
        print(parsed.read("hello.txt"))
    """

    def __init__(self, data: Optional[bytes] = None, *, compression_level: int = DEFAULT_COMPRESSION_LEVEL):
        """Create an empty archive, or parse ``data``.

        Args:
            data: Complete archive contents (bytes-like), or None for a new archive.
            compression_level: zlib level used when building deflated members.

        Raises:
            ZipFormatError: If ``data`` is not a well-formed archive.
            ZipOverlapError: If records of ``data`` share bytes.
            ZipUnsupportedFeature: If ``data`` is a multi-disk archive.
        """
        self.compression_level = compression_level
        self.comment = ""
        self.disk_number = 0
        self.disk_start_dir = 0
        self.num_entries = 0
        self.total_entries = 0

        self._data: Optional[bytes] = None
        self._data_limit = 0
        self._directory: dict[str, ArchiveMember] = {}
        self._zip64_requested: Optional[bool] = None
        self._zip64_in_use = False

        if data is not None:
            self._load(bytes(data))

    def _load(self, data: bytes) -> None:
        """Parse ``data`` and take over its members."""
        parsed = read_archive(data)
        location = parsed.location

        # Nothing is assigned until the whole parse has succeeded
        directory = {}
        for member in parsed.members:
            directory[member.name] = member

        self._data = data
        self._data_limit = location.tail_offset
        self._directory = directory
        self._zip64_in_use = location.is_zip64
        self.comment = decode_text(parsed.comment, 0)
        self.disk_number = location.eocd.disk_num
        self.disk_start_dir = location.eocd.cd_disk
        self.num_entries = location.num_entries
        self.total_entries = location.total_entries

    @property
    def directory(self) -> Mapping[str, ArchiveMember]:
        """Read-only mapping of entry name to member."""
        return MappingProxyType(self._directory)

    @property
    def is_zip64(self) -> bool:
        """Whether the archive uses ZIP64 records.

        Reflects the parsed or last built archive, unless ZIP64 output was
        forced on or off by assigning this property.
        """
        if self._zip64_requested is not None:
            return self._zip64_requested
        return self._zip64_in_use

    @is_zip64.setter
    def is_zip64(self, value: Optional[bool]) -> None:
        # None restores automatic selection
        self._zip64_requested = value

    def add_member(self, member: ArchiveMember) -> None:
        """Add a member, replacing any member with the same name.

        Args:
            member: Member to add.
        """
        if not isinstance(member, ArchiveMember):
            raise TypeError(f"Expected ArchiveMember, got {type(member).__name__}")
        self._directory[member.name] = member

    def delete_member(self, name: str) -> None:
        """Remove a member.

        Args:
            name: Entry name.

        Raises:
            KeyError: If entry is not found.
        """
        if name not in self._directory:
            raise KeyError(f"Entry not found: {name}")
        del self._directory[name]

    def _ordered_members(self) -> list[ArchiveMember]:
        # sorted() is stable, so members without an index keep insertion order
        return sorted(
            self._directory.values(),
            key=lambda member: (member.index is None, member.index if member.index is not None else 0),
        )

    def build(self) -> bytes:
        """Serialize the current members into a new archive.

        Members are written in ``index`` order; members without an index
        follow, in insertion order. The archive then refers to the new
        buffer, so members can still be expanded afterwards.

        Returns:
            The archive contents.

        Raises:
            ZipLimitExceeded: If a field is too long for the format, or ZIP64
                is needed but was disabled through ``is_zip64``.
            ZipUnsupportedFeature: If a member's compression method is not
                supported.
        """
        result = build_archive(
            self._ordered_members(),
            comment=self.comment,
            zip64=self._zip64_requested,
            level=self.compression_level,
        )

        self._data = result.data
        self._data_limit = result.cd_offset
        self._zip64_in_use = result.is_zip64
        self.disk_number = 0
        self.disk_start_dir = 0
        self.num_entries = result.num_entries
        self.total_entries = result.num_entries

        logger.debug("Built archive of %d bytes with %d entries", len(result.data), result.num_entries)
        return result.data

    def expand(self, member: ArchiveMember) -> bytes:
        """Get a member's uncompressed content.

        The result is cached on the member, so repeated calls are cheap.

        Args:
            member: A member of this archive.

        Returns:
            Decompressed data as bytes.

        Raises:
            ZipError: If the member has no content available in this archive.
            ZipFormatError: If the member's local header is invalid or
                disagrees with the central directory.
            ZipUnsupportedFeature: If the member is encrypted or uses an
                unsupported compression method.
            ZipCrcError: If CRC32 validation fails.
        """
        if member.expanded_data is not None:
            return member.expanded_data

        if self._data is None or self._directory.get(member.name) is not member:
            raise ZipError(f"Entry '{member.name}' is not stored in this archive")

        data = expand_member(self._data, member, self._data_limit)
        member._expanded_data = data
        return data

    def read(self, name: str) -> bytes:
        """Get the uncompressed content of the member called ``name``.

        Raises:
            KeyError: If entry is not found.
        """
        if name not in self._directory:
            raise KeyError(f"Entry not found: {name}")
        return self.expand(self._directory[name])

    def __len__(self) -> int:
        return len(self._directory)

    def __contains__(self, name: object) -> bool:
        return name in self._directory

    def __repr__(self) -> str:
        return f"ZipArchive(entries={len(self._directory)}, zip64={self.is_zip64})"
