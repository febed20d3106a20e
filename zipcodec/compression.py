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
Compression collaborators used by the reader and the writer.

ZIP stores deflate data without the zlib header and trailer ("raw deflate"),
which zlib selects with a negative window size. Errors raised by zlib are
passed through unchanged.
"""

import zlib

from .constants import COMP_DEFLATE, COMP_STORED, DEFAULT_COMPRESSION_LEVEL
from .errors import ZipUnsupportedFeature


def compress(data: bytes, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    """Compress data to a raw deflate stream."""
    compressor = zlib.compressobj(level=level, wbits=-zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def decompress(data: bytes, expected_size: int) -> bytes:
    """Decompress a raw deflate stream.

    Output stops one byte past ``expected_size``, so a stream that expands
    further than recorded is detected without being expanded completely.

    Args:
        data: Raw deflate data.
        expected_size: Size of the output as recorded in the archive.

    Returns:
        Decompressed data as bytes, at most ``expected_size + 1`` long.

    Raises:
        zlib.error: If the stream is corrupt or truncated.
    """
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    output = decompressor.decompress(data, expected_size + 1)
    if len(output) > expected_size:
        return output

    output += decompressor.flush()
    if not decompressor.eof:
        raise zlib.error("Error -5 while decompressing data: incomplete or truncated stream")
    return output


def compress_member_data(method: int, data: bytes, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    """Compress entry data using the specified method.

    Args:
        method: Compression method id.
        data: Data to compress.
        level: zlib compression level, for deflate.

    Returns:
        Compressed data as bytes.

    Raises:
        ZipUnsupportedFeature: If compression method is not supported.
    """
    if method == COMP_STORED:
        return bytes(data)
    elif method == COMP_DEFLATE:
        return compress(data, level)
    else:
        raise ZipUnsupportedFeature(f"Unsupported compression method: {method}")


def decompress_member_data(method: int, data: bytes, expected_size: int) -> bytes:
    """Decompress entry data using the specified method.

    Raises:
        ZipUnsupportedFeature: If compression method is not supported.
    """
    if method == COMP_STORED:
        return bytes(data)
    elif method == COMP_DEFLATE:
        return decompress(data, expected_size)
    else:
        raise ZipUnsupportedFeature(f"Unsupported compression method: {method}")
