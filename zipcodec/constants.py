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
ZIP format constants: record signatures, fixed record sizes, Zip64 sentinels,
compression methods, flags and version numbers.

Every other module of the codec reads its configuration from here.
"""

import zlib

# Record signatures (little-endian u32 values of "PK\x03\x04" etc.)
LOCAL_FILE_HEADER = 0x04034B50  # "PK\x03\x04"
CENTRAL_DIR_HEADER = 0x02014B50  # "PK\x01\x02"
END_OF_CENTRAL_DIR = 0x06054B50  # "PK\x05\x06"
ZIP64_END_OF_CENTRAL_DIR = 0x06064B50  # "PK\x06\x06"
ZIP64_END_OF_CENTRAL_DIR_LOCATOR = 0x07064B50  # "PK\x06\x07"

# Compression methods
COMP_STORED = 0  # No compression
COMP_DEFLATE = 8  # Raw deflate

# Compression method names (for API)
COMPRESSION_STORED = "stored"
COMPRESSION_DEFLATE = "deflate"

COMPRESSION_METHODS = {
    COMPRESSION_STORED: COMP_STORED,
    COMPRESSION_DEFLATE: COMP_DEFLATE,
}

DEFAULT_COMPRESSION_LEVEL = zlib.Z_DEFAULT_COMPRESSION

# General purpose bit flags
FLAG_ENCRYPTED = 0x0001  # File is encrypted
FLAG_DATA_DESCRIPTOR = 0x0008  # Data descriptor follows file data
FLAG_STRONG_ENCRYPTION = 0x0040  # Strong encryption used
FLAG_UTF8 = 0x0800  # UTF-8 encoding for filename/comment

# ZIP version constants
VERSION_DEFAULT = 20  # Default "made by" / "needed to extract"
VERSION_ZIP64 = 45  # ZIP64 format version

# Zip64 sentinels. A legacy field holding one of these defers to the Zip64 records.
ZIP64_SENTINEL_16 = 0xFFFF
ZIP64_SENTINEL_32 = 0xFFFFFFFF

# Variable-length fields are prefixed by u16 lengths
MAX_FIELD_LENGTH = 0xFFFF

# Largest value a 32-bit field can hold without colliding with the sentinel
MAX_LEGACY_ENTRIES = ZIP64_SENTINEL_16 - 1
MAX_LEGACY_SIZE = ZIP64_SENTINEL_32 - 1

# ZIP64 extra field tag
ZIP64_EXTRA_FIELD_TAG = 0x0001

# Local file header size (fixed part)
LOCAL_FILE_HEADER_SIZE = 30

# Central directory header size (fixed part, excluding filename/extra/comment)
CENTRAL_DIR_HEADER_SIZE = 46

# End of central directory size (fixed part, excluding comment)
END_OF_CENTRAL_DIR_SIZE = 22

# ZIP64 end of central directory size (fixed part)
ZIP64_END_OF_CENTRAL_DIR_SIZE = 56

# Signature and size field of the ZIP64 EOCD are not counted in its size field
ZIP64_END_OF_CENTRAL_DIR_LEADING = 12

# ZIP64 locator size (fixed part)
ZIP64_LOCATOR_SIZE = 20

# The EOCD comment can be at most 65535 bytes, so the scan covers 65536 positions
EOCD_SCAN_POSITIONS = MAX_FIELD_LENGTH + 1
