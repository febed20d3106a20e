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
Exception classes for the ZIP codec.

Every failure is fatal to the operation that raised it: a parse either
produces a complete archive or raises one of these.
"""


class ZipError(Exception):
    """Base exception class for all ZIP-related errors."""

    pass


class ZipFormatError(ZipError):
    """Raised when a buffer is not a well-formed ZIP archive.

    This exception is raised when:
    - Required signatures are missing or incorrect
    - Redundant fields (local header, central directory, Zip64 records) disagree
    - The central directory does not end where the end record says it does
    - No end of central directory record, or more than one, is found
    """

    pass


class ZipOverlapError(ZipFormatError):
    """Raised when two parsed records claim overlapping bytes of the buffer.

    This signals either structural corruption or a deliberate attempt to make
    one region of the file be read as two different things.
    """

    def __init__(self, start: int, end: int):
        super().__init__(
            f"Byte range [0x{start:08X}, 0x{end:08X}) overlaps a record that was already parsed"
        )
        self.start = start
        self.end = end


class ZipUnsupportedFeature(ZipError):
    """Raised when encountering an unsupported ZIP feature.

    This exception is raised when:
    - Compression method is not supported
    - Encryption is used (not supported)
    - The archive spans multiple disks
    """

    pass


class ZipLimitExceeded(ZipError):
    """Raised at build time when a value does not fit the format.

    This exception is raised when:
    - A comment, name or extra field is longer than 65535 bytes
    - The archive needs Zip64 structures but Zip64 output was disabled
    """

    pass


class ZipCrcError(ZipError):
    """Raised when CRC32 checksum validation fails.

    This exception is raised when the computed CRC32 of decompressed data
    does not match the expected CRC32 stored in the archive.
    """

    pass
