"""Tests for building, parsing and expanding archives."""

import io
import random
import struct
import zipfile
import zlib
from datetime import datetime

import pytest

from zipcodec import (
    ArchiveMember,
    ZipArchive,
    ZipCrcError,
    ZipError,
    ZipFormatError,
    ZipLimitExceeded,
    ZipOverlapError,
    ZipUnsupportedFeature,
)
from zipcodec import writer
from zipcodec.constants import COMP_DEFLATE, COMP_STORED, FLAG_UTF8


def build(*members: ArchiveMember, comment: str = "", zip64=None) -> bytes:
    archive = ZipArchive()
    for member in members:
        archive.add_member(member)
    archive.comment = comment
    archive.is_zip64 = zip64
    return archive.build()


def cd_offset_of(data: bytes) -> int:
    """Central directory offset of a non-ZIP64 archive without a comment."""
    return struct.unpack_from("<I", data, len(data) - 22 + 16)[0]


class TestRoundTrip:
    def test_nine_byte_deflate_entry(self) -> None:
        content = b"123456789"
        data = build(ArchiveMember("buf", content, "deflate"))

        archive = ZipArchive(data)
        member = archive.directory["buf"]
        assert member.compression_method == COMP_DEFLATE
        assert member.crc32 == 0xCBF43926
        assert archive.expand(member) == content

    def test_stored_and_deflated_entries(self) -> None:
        data = build(
            ArchiveMember("docs/readme.txt", b"Hello, World!\n" * 100, "deflate"),
            ArchiveMember("raw.bin", bytes(range(256)), "stored"),
            ArchiveMember("empty", b"", "deflate"),
            comment="archive comment",
        )

        archive = ZipArchive(data)
        assert list(archive.directory) == ["docs/readme.txt", "raw.bin", "empty"]
        assert archive.comment == "archive comment"
        assert archive.read("docs/readme.txt") == b"Hello, World!\n" * 100
        assert archive.read("raw.bin") == bytes(range(256))
        assert archive.read("empty") == b""
        assert archive.directory["raw.bin"].compression_method == COMP_STORED
        assert not archive.is_zip64

    def test_entry_metadata_survives(self) -> None:
        when = datetime(2021, 3, 4, 5, 6, 8)
        data = build(
            ArchiveMember(
                "meta.txt",
                b"x",
                date_time=when,
                comment="entry comment",
                extra=b"\x99\x99\x02\x00ab",
                internal_attributes=1,
                external_attributes=0o100644 << 16,
            )
        )

        member = ZipArchive(data).directory["meta.txt"]
        assert member.date_time == when
        assert member.comment == "entry comment"
        assert member.extra == b"\x99\x99\x02\x00ab"
        assert member.internal_attributes == 1
        assert member.external_attributes == 0o100644 << 16

    def test_unicode_names_set_utf8_flag(self) -> None:
        data = build(ArchiveMember("café/naïve.txt", b"data"))
        member = ZipArchive(data).directory["café/naïve.txt"]
        assert member.flags & FLAG_UTF8

    def test_large_entry_with_forced_zip64(self) -> None:
        content = random.Random(0).randbytes(100_000)
        data = build(ArchiveMember("random.bin", content), comment="big", zip64=True)
        assert b"PK\x06\x06" in data
        assert b"PK\x06\x07" in data

        archive = ZipArchive(data)
        assert archive.is_zip64
        assert archive.comment == "big"
        assert archive.read("random.bin") == content

    def test_empty_archive(self) -> None:
        data = build()
        assert len(data) == 22
        assert len(ZipArchive(data)) == 0

    def test_expand_is_cached(self) -> None:
        archive = ZipArchive(build(ArchiveMember("a", b"abc")))
        member = archive.directory["a"]
        assert member.expanded_data is None
        first = archive.expand(member)
        assert member.expanded_data == b"abc"
        assert archive.expand(member) is first
        # Expanding keeps the compressed form for a later rebuild
        assert member.compressed_data is not None


class TestOrdering:
    def test_shuffled_indices_come_back_in_order(self) -> None:
        indices = list(range(20))
        random.Random(1234).shuffle(indices)

        archive = ZipArchive()
        for i in indices:
            archive.add_member(ArchiveMember(f"file{i:02d}.txt", f"content {i}".encode(), index=i))
        data = archive.build()

        reparsed = ZipArchive(data)
        assert list(reparsed.directory) == [f"file{i:02d}.txt" for i in range(20)]

        rebuilt = ZipArchive(reparsed.build())
        assert list(rebuilt.directory) == [f"file{i:02d}.txt" for i in range(20)]

    def test_unindexed_members_follow_in_insertion_order(self) -> None:
        archive = ZipArchive()
        archive.add_member(ArchiveMember("late-1", b""))
        archive.add_member(ArchiveMember("second", b"", index=5))
        archive.add_member(ArchiveMember("late-2", b""))
        archive.add_member(ArchiveMember("first", b"", index=1))

        reparsed = ZipArchive(archive.build())
        assert list(reparsed.directory) == ["first", "second", "late-1", "late-2"]
        assert [m.index for m in reparsed.directory.values()] == [0, 1, 2, 3]


class TestMutation:
    def test_delete_member(self) -> None:
        archive = ZipArchive(build(ArchiveMember("keep", b"1"), ArchiveMember("drop", b"2")))
        archive.delete_member("drop")
        assert "drop" not in archive

        reparsed = ZipArchive(archive.build())
        assert list(reparsed.directory) == ["keep"]
        assert reparsed.read("keep") == b"1"

    def test_delete_missing_member(self) -> None:
        with pytest.raises(KeyError):
            ZipArchive().delete_member("missing")

    def test_add_member_replaces_same_name(self) -> None:
        archive = ZipArchive()
        archive.add_member(ArchiveMember("a", b"old"))
        archive.add_member(ArchiveMember("a", b"new"))
        assert len(archive) == 1
        assert ZipArchive(archive.build()).read("a") == b"new"

    def test_directory_is_read_only(self) -> None:
        archive = ZipArchive()
        with pytest.raises(TypeError):
            archive.directory["a"] = ArchiveMember("a", b"")

    def test_rebuild_reuses_compressed_data(self) -> None:
        original = build(ArchiveMember("a.txt", b"alpha" * 50), ArchiveMember("b.txt", b"beta" * 50))
        archive = ZipArchive(original)

        # Nothing was expanded, so the entries are copied as they are
        assert archive.build() == original
        assert archive.read("b.txt") == b"beta" * 50

    def test_rebuild_with_new_content(self) -> None:
        archive = ZipArchive(build(ArchiveMember("a.txt", b"alpha"), ArchiveMember("b.txt", b"beta")))
        archive.directory["a.txt"].expanded_data = b"replaced"

        reparsed = ZipArchive(archive.build())
        assert reparsed.read("a.txt") == b"replaced"
        assert reparsed.read("b.txt") == b"beta"

    def test_change_method_after_expanding(self) -> None:
        archive = ZipArchive(build(ArchiveMember("a.txt", b"aaaa" * 100, "deflate")))
        member = archive.directory["a.txt"]

        with pytest.raises(ZipError):
            member.compression_method = "stored"

        archive.expand(member)
        member.compression_method = "stored"
        reparsed = ZipArchive(archive.build())
        assert reparsed.directory["a.txt"].compression_method == COMP_STORED
        assert reparsed.read("a.txt") == b"aaaa" * 100

    def test_expand_member_of_another_archive(self) -> None:
        with pytest.raises(ZipError):
            ZipArchive().expand(ArchiveMember("orphan"))

    def test_unknown_method_name(self) -> None:
        with pytest.raises(ZipUnsupportedFeature):
            ArchiveMember("a", b"", "bzip2")


class TestZip64:
    def test_entry_count_switches_to_zip64(self) -> None:
        archive = ZipArchive()
        for i in range(0xFFFF):
            archive.add_member(ArchiveMember(str(i), b"", "stored"))
        data = archive.build()
        assert archive.is_zip64
        assert archive.num_entries == 0xFFFF

        reparsed = ZipArchive(data)
        assert reparsed.is_zip64
        assert len(reparsed) == 0xFFFF
        assert reparsed.read("65534") == b""

    def test_zip64_can_be_forbidden(self) -> None:
        archive = ZipArchive()
        for i in range(0xFFFF):
            archive.add_member(ArchiveMember(str(i), b"", "stored"))
        archive.is_zip64 = False
        with pytest.raises(ZipLimitExceeded):
            archive.build()

    def test_sizes_and_offsets_switch_to_zip64(self, monkeypatch: pytest.MonkeyPatch) -> None:
        # Shrink the 32-bit limit so a few hundred bytes need ZIP64 fields
        monkeypatch.setattr(writer, "MAX_LEGACY_SIZE", 100)

        big = bytes(range(256)) + b"z" * 44
        archive = ZipArchive()
        archive.add_member(ArchiveMember("big.bin", big, "stored"))
        archive.add_member(ArchiveMember("second.txt", b"small", "stored", extra=b"\x99\x99\x02\x00ab"))
        data = archive.build()
        assert archive.is_zip64
        assert b"PK\x06\x06" in data

        # Local header of the large entry defers both sizes to its ZIP64 record
        assert struct.unpack_from("<II", data, 18) == (0xFFFFFFFF, 0xFFFFFFFF)

        reparsed = ZipArchive(data)
        assert reparsed.is_zip64

        first = reparsed.directory["big.bin"]
        assert first.expanded_size == 300
        assert first.compressed_size == 300
        assert first.extra == b""
        assert reparsed.read("big.bin") == big

        second = reparsed.directory["second.txt"]
        assert second.local_header_offset == 30 + len("big.bin") + 20 + 300
        assert second.extra == b"\x99\x99\x02\x00ab"
        assert reparsed.read("second.txt") == b"small"

    def test_small_archive_is_not_zip64(self) -> None:
        data = build(ArchiveMember("a", b"abc"))
        assert b"PK\x06\x06" not in data
        assert not ZipArchive(data).is_zip64


class TestLimits:
    def test_archive_comment_too_long(self) -> None:
        archive = ZipArchive()
        archive.comment = "c" * 0x10000
        with pytest.raises(ZipLimitExceeded):
            archive.build()

    def test_longest_archive_comment(self) -> None:
        data = build(comment="c" * 0xFFFF)
        assert ZipArchive(data).comment == "c" * 0xFFFF

    def test_name_too_long(self) -> None:
        with pytest.raises(ZipLimitExceeded):
            build(ArchiveMember("n" * 0x10000, b""))

    def test_entry_comment_too_long(self) -> None:
        with pytest.raises(ZipLimitExceeded):
            build(ArchiveMember("a", b"", comment="c" * 0x10000))


class TestHostileInput:
    def _single_entry(self) -> bytearray:
        return bytearray(build(ArchiveMember("a.txt", b"hello world", "stored")))

    def test_local_header_inside_central_directory(self) -> None:
        data = self._single_entry()
        cd_offset = cd_offset_of(data)
        struct.pack_into("<I", data, cd_offset + 42, cd_offset)
        with pytest.raises(ZipOverlapError):
            ZipArchive(bytes(data))

    def test_two_entries_sharing_local_header(self) -> None:
        data = bytearray(build(ArchiveMember("a", b"1", "stored"), ArchiveMember("b", b"2", "stored")))
        cd_offset = cd_offset_of(data)
        second_header = cd_offset + 46 + 1
        struct.pack_into("<I", data, second_header + 42, 0)
        with pytest.raises(ZipOverlapError):
            ZipArchive(bytes(data))

    def test_local_header_offset_out_of_bounds(self) -> None:
        data = self._single_entry()
        struct.pack_into("<I", data, cd_offset_of(data) + 42, len(data) + 100)
        with pytest.raises(ZipFormatError):
            ZipArchive(bytes(data))

    def test_entry_count_larger_than_directory(self) -> None:
        data = self._single_entry()
        struct.pack_into("<HH", data, len(data) - 22 + 8, 2, 2)
        with pytest.raises(ZipFormatError):
            ZipArchive(bytes(data))

    def test_bad_central_header_signature(self) -> None:
        data = self._single_entry()
        data[cd_offset_of(data)] = 0
        with pytest.raises(ZipFormatError):
            ZipArchive(bytes(data))

    def test_local_header_disagrees_with_directory(self) -> None:
        data = self._single_entry()
        # Modification time of the local header
        struct.pack_into("<I", data, 10, 0)
        archive = ZipArchive(bytes(data))
        with pytest.raises(ZipFormatError, match="modification time"):
            archive.read("a.txt")

    def test_crc_mismatch(self) -> None:
        data = self._single_entry()
        data[30 + len("a.txt")] ^= 0xFF
        archive = ZipArchive(bytes(data))
        with pytest.raises(ZipCrcError):
            archive.read("a.txt")

    def test_encrypted_entry(self) -> None:
        data = self._single_entry()
        cd_offset = cd_offset_of(data)
        struct.pack_into("<H", data, 6, 0x0001)
        struct.pack_into("<H", data, cd_offset + 8, 0x0001)
        archive = ZipArchive(bytes(data))
        with pytest.raises(ZipUnsupportedFeature):
            archive.read("a.txt")

    def test_unsupported_compression_method(self) -> None:
        data = self._single_entry()
        cd_offset = cd_offset_of(data)
        struct.pack_into("<H", data, 8, 12)
        struct.pack_into("<H", data, cd_offset + 10, 12)
        archive = ZipArchive(bytes(data))
        with pytest.raises(ZipUnsupportedFeature):
            archive.read("a.txt")

    def test_data_descriptor_entry(self) -> None:
        data = self._single_entry()
        cd_offset = cd_offset_of(data)
        struct.pack_into("<H", data, 6, 0x0008)
        struct.pack_into("<III", data, 14, 0, 0, 0)
        struct.pack_into("<H", data, cd_offset + 8, 0x0008)
        archive = ZipArchive(bytes(data))
        assert archive.read("a.txt") == b"hello world"

        # Rebuilt archives carry the sizes in the local header instead
        rebuilt = ZipArchive(archive.build())
        assert not rebuilt.directory["a.txt"].flags & 0x0008
        assert rebuilt.read("a.txt") == b"hello world"

    def test_expansion_larger_than_recorded(self) -> None:
        data = bytearray(build(ArchiveMember("bomb", b"a" * 10_000, "deflate")))
        cd_offset = cd_offset_of(data)
        struct.pack_into("<I", data, 22, 10)
        struct.pack_into("<I", data, cd_offset + 24, 10)
        archive = ZipArchive(bytes(data))
        with pytest.raises(ZipFormatError):
            archive.read("bomb")

    def test_truncated_deflate_stream(self) -> None:
        data = bytearray(build(ArchiveMember("t", b"abc" * 1000, "deflate")))
        cd_offset = cd_offset_of(data)
        compressed_size = struct.unpack_from("<I", data, 18)[0]
        struct.pack_into("<I", data, 18, compressed_size // 2)
        struct.pack_into("<I", data, cd_offset + 20, compressed_size // 2)
        archive = ZipArchive(bytes(data))
        with pytest.raises(zlib.error):
            archive.read("t")


class TestInterop:
    def test_stdlib_reads_our_archives(self) -> None:
        data = build(
            ArchiveMember("deflated.txt", b"deflate me " * 50, "deflate"),
            ArchiveMember("stored.bin", b"\x00\x01\x02", "stored"),
            ArchiveMember("ünïcode.txt", b"u"),
            comment="from zipcodec",
        )
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.testzip() is None
            assert zf.namelist() == ["deflated.txt", "stored.bin", "ünïcode.txt"]
            assert zf.read("deflated.txt") == b"deflate me " * 50
            assert zf.read("stored.bin") == b"\x00\x01\x02"
            assert zf.comment == b"from zipcodec"

    def test_stdlib_reads_our_zip64_archives(self) -> None:
        data = build(ArchiveMember("a.txt", b"hello"), zip64=True)
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.read("a.txt") == b"hello"

    def test_we_read_stdlib_archives(self) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            info = zipfile.ZipInfo("dir/deflated.txt", date_time=(2020, 1, 2, 3, 4, 6))
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, b"stdlib " * 100)
            zf.writestr("stored.txt", b"plain", compress_type=zipfile.ZIP_STORED)
            zf.comment = b"made by zipfile"

        archive = ZipArchive(buffer.getvalue())
        assert list(archive.directory) == ["dir/deflated.txt", "stored.txt"]
        assert archive.comment == "made by zipfile"
        assert archive.read("dir/deflated.txt") == b"stdlib " * 100
        assert archive.read("stored.txt") == b"plain"
        assert archive.directory["dir/deflated.txt"].date_time == datetime(2020, 1, 2, 3, 4, 6)

        # And the stdlib reads the rebuilt archive
        with zipfile.ZipFile(io.BytesIO(archive.build())) as zf:
            assert zf.read("dir/deflated.txt") == b"stdlib " * 100
