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
ZIPCODEC - In-memory ZIP/ZIP64 archive codec for untrusted input.

Archives are parsed from and built into byte buffers. Parsing rejects
ambiguous or overlapping structures instead of guessing, and building
switches to ZIP64 records only when the archive needs them.
"""

from .archive import ZipArchive
from .errors import (
    ZipCrcError,
    ZipError,
    ZipFormatError,
    ZipLimitExceeded,
    ZipOverlapError,
    ZipUnsupportedFeature,
)
from .member import ArchiveMember
from .segments import SegmentTracker

__all__ = [
    "ZipArchive",
    "ArchiveMember",
    "SegmentTracker",
    "ZipError",
    "ZipFormatError",
    "ZipOverlapError",
    "ZipUnsupportedFeature",
    "ZipLimitExceeded",
    "ZipCrcError",
]

__version__ = "0.1.0"
