"""Tests for the ZIP writer."""

import io
import struct
import zipfile
import zlib

from trace_recorder.export.archive import ZipArchiveWriter

UTF8_NAME_FLAG = 0x0800


class TestZipArchiveWriter:
    def test_empty_archive(self):
        data = ZipArchiveWriter().build()
        assert len(data) == 22
        assert data[:4] == b"PK\x05\x06"
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == []

    def test_entries_round_trip(self):
        png = bytes(range(256))
        writer = ZipArchiveWriter()
        writer.add_text("report.md", "# Report\n")
        writer.add_file("0001-click.png", png)
        assert len(writer) == 2
        assert writer.names == ["report.md", "0001-click.png"]

        data = writer.build()
        assert data[:4] == b"PK\x03\x04"
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.testzip() is None
            assert archive.namelist() == ["report.md", "0001-click.png"]
            assert archive.read("report.md") == b"# Report\n"
            assert archive.read("0001-click.png") == png
            info = archive.getinfo("0001-click.png")
            assert info.compress_type == zipfile.ZIP_STORED
            assert info.compress_size == info.file_size == len(png)
            assert info.CRC == zlib.crc32(png)
            assert info.date_time == (1980, 1, 1, 0, 0, 0)

    def test_non_ascii_name_sets_utf8_flag(self):
        writer = ZipArchiveWriter()
        writer.add_text("überblick.md", "ü")
        data = writer.build()

        flags = struct.unpack_from("<H", data, 6)[0]
        assert flags & UTF8_NAME_FLAG
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == ["überblick.md"]
            assert archive.read("überblick.md").decode("utf-8") == "ü"

    def test_ascii_name_has_no_flags(self):
        writer = ZipArchiveWriter()
        writer.add_text("a.txt", "a")
        assert struct.unpack_from("<H", writer.build(), 6)[0] == 0

    def test_build_is_deterministic(self):
        writer = ZipArchiveWriter()
        writer.add_text("a.txt", "same")
        assert writer.build() == writer.build()
