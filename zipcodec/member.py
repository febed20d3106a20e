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
Archive member (entry) metadata and payload.
"""

from datetime import datetime
from typing import Optional, Union

from .constants import COMP_DEFLATE, COMPRESSION_METHODS, VERSION_DEFAULT
from .errors import ZipError, ZipUnsupportedFeature
from .utils import dos_datetime_to_timestamp, timestamp_to_dos_datetime


def resolve_compression_method(method: Union[int, str]) -> int:
    """Map a method name ("stored", "deflate") or numeric id to the numeric id."""
    if isinstance(method, str):
        if method not in COMPRESSION_METHODS:
            raise ZipUnsupportedFeature(f"Unsupported compression method: {method}")
        return COMPRESSION_METHODS[method]
    return int(method)


class ArchiveMember:
    """A single file entry of a ZIP archive.

    A member carries its payload either as expanded (uncompressed) bytes, as
    compressed bytes, or both once one has been derived from the other.
    Compressed bytes of a parsed archive are a ``memoryview`` into the
    archive's buffer.

    Assigning ``expanded_data`` or changing ``compression_method`` discards
    the compressed form; the next ``ZipArchive.build()`` recompresses it.

    Example:
        member = ArchiveMember("hello.txt", b"Hello, World!", "deflate")
        archive.add_member(member)
    """

    def __init__(
        self,
        name: str,
        data: Optional[bytes] = None,
        compression_method: Union[int, str] = COMP_DEFLATE,
        *,
        index: Optional[int] = None,
        date_time: Optional[datetime] = None,
        comment: str = "",
        extra: bytes = b"",
        flags: int = 0,
        internal_attributes: int = 0,
        external_attributes: int = 0,
        made_version: int = VERSION_DEFAULT,
        extract_version: int = VERSION_DEFAULT,
    ):
        """Create a member.

        Args:
            name: Entry name (path within the archive). Fixed for the
                member's lifetime.
            data: Uncompressed content, if known.
            compression_method: Method id or name ("stored", "deflate").
            index: Explicit position in the built archive. Members without
                one come after all members that have one.
            date_time: Modification time; defaults to now.
            comment: Entry comment.
            extra: Extra field records, without any ZIP64 record.
            flags: General purpose bit flags.
            internal_attributes: Internal file attributes.
            external_attributes: OS-specific file attributes, stored verbatim.
            made_version: "Version made by" field.
            extract_version: "Version needed to extract" field.
        """
        if not isinstance(name, str):
            raise TypeError(f"Member name must be str, not {type(name).__name__}")

        self._name = name
        self._compression_method = resolve_compression_method(compression_method)
        self.index = index
        self.made_version = made_version
        self.extract_version = extract_version
        self.flags = flags
        self.modification_time = timestamp_to_dos_datetime(date_time or datetime.now())
        self.disk_number = 0
        self.internal_attributes = internal_attributes
        self.external_attributes = external_attributes
        self.extra = bytes(extra)
        self.comment = comment

        self.crc32 = 0
        self.compressed_size = 0
        self.expanded_size = 0
        self.local_header_offset = 0

        self._expanded_data: Optional[bytes] = None
        self._compressed_data = None

        if data is not None:
            self.expanded_data = data

    @property
    def name(self) -> str:
        return self._name

    @property
    def compression_method(self) -> int:
        return self._compression_method

    @compression_method.setter
    def compression_method(self, method: Union[int, str]) -> None:
        method = resolve_compression_method(method)
        if method == self._compression_method:
            return
        if self._compressed_data is not None:
            if self._expanded_data is None:
                raise ZipError(
                    f"Cannot change the compression method of '{self._name}' before it is expanded"
                )
            self._compressed_data = None
        self._compression_method = method

    @property
    def expanded_data(self) -> Optional[bytes]:
        """Uncompressed content, or None if not expanded yet."""
        return self._expanded_data

    @expanded_data.setter
    def expanded_data(self, data: bytes) -> None:
        self._expanded_data = bytes(data)
        self._compressed_data = None
        self.expanded_size = len(self._expanded_data)

    @property
    def compressed_data(self):
        """Compressed content, or None until parsed or built."""
        return self._compressed_data

    @property
    def date_time(self) -> datetime:
        """Get modification date/time as datetime object."""
        return dos_datetime_to_timestamp(self.modification_time)

    @date_time.setter
    def date_time(self, dt: datetime) -> None:
        self.modification_time = timestamp_to_dos_datetime(dt)

    def _set_compressed(self, data, crc: int, expanded_size: int) -> None:
        """Attach compressed content and the checksum/size describing it."""
        self._compressed_data = data
        self.compressed_size = len(data)
        self.crc32 = crc
        self.expanded_size = expanded_size

    def __repr__(self) -> str:
        return (
            f"ArchiveMember(name={self._name!r}, method={self._compression_method}, "
            f"expanded_size={self.expanded_size}, compressed_size={self.compressed_size}, "
            f"crc32=0x{self.crc32:08X})"
        )
