"""
Tests for PackageWriter — section state machine and exact byte layout.
"""

from __future__ import annotations

import logging
from array import array

import pytest

from nccpkg._format.errors import PackageClosedError, PackageExistsError
from nccpkg._format.reader import PackageReader
from nccpkg._format.spec import SIGNATURE, WritingMode, encode_size
from nccpkg._format.writer import PackageWriter


PREAMBLE = SIGNATURE + b"\xa1" + b"1.00" + b"\xe0\xe0"


@pytest.fixture
def pkg_path(tmp_path):
    return tmp_path / "app.ncc"


def _entry(name: bytes, data: bytes) -> bytes:
    return name + b"\xe1" + encode_size(len(data)) + b"\xe1" + data + b"\xe0\xe0"


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestWriterOpen:

    def test_preamble_written(self, pkg_path):
        writer = PackageWriter(pkg_path)
        assert writer.mode is WritingMode.HEADER
        assert writer.bytes_written == len(PREAMBLE)
        writer.close()
        assert pkg_path.read_bytes() == PREAMBLE + b"\xe0\xe0"

    def test_exists_without_overwrite(self, pkg_path):
        pkg_path.write_bytes(b"old")
        with pytest.raises(PackageExistsError, match="already exists"):
            PackageWriter(pkg_path)
        assert pkg_path.read_bytes() == b"old"

    def test_exists_error_is_file_exists_error(self, pkg_path):
        pkg_path.write_bytes(b"old")
        with pytest.raises(FileExistsError):
            PackageWriter(pkg_path, overwrite=False)

    def test_overwrite_truncates(self, pkg_path):
        pkg_path.write_bytes(b"x" * 1000)
        with PackageWriter(pkg_path, overwrite=True):
            pass
        assert pkg_path.read_bytes() == PREAMBLE + b"\xe0\xe0"

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "build" / "out" / "app.ncc"
        with PackageWriter(path):
            pass
        assert path.is_file()

    def test_prefix(self, pkg_path):
        stub = b"#!/usr/bin/env php\n<?php __halt_compiler();"
        with PackageWriter(pkg_path, prefix=stub) as writer:
            assert writer.bytes_written == len(stub) + len(PREAMBLE)
        assert pkg_path.read_bytes().startswith(stub + SIGNATURE)

    def test_prefix_with_signature_rejected(self, pkg_path):
        with pytest.raises(ValueError, match="signature"):
            PackageWriter(pkg_path, prefix=b"junk" + SIGNATURE)
        assert not pkg_path.exists()

    def test_bad_version_rejected(self, pkg_path):
        with pytest.raises(ValueError):
            PackageWriter(pkg_path, version="2")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestWriterSections:

    def test_singletons_advance_automatically(self, pkg_path):
        with PackageWriter(pkg_path) as writer:
            writer.write_data(b"H")
            assert writer.mode is WritingMode.ASSEMBLY
            writer.write_data(b"A")
            assert writer.mode is WritingMode.EXECUTION_UNITS

    def test_singleton_layout(self, pkg_path):
        with PackageWriter(pkg_path) as writer:
            writer.write_data(b"{v:1}", name="ignored")
        expected = PREAMBLE + b"\xa2" + encode_size(5) + b"\xe1" + b"{v:1}" + b"\xe0\xe0"
        assert pkg_path.read_bytes() == expected + b"\xe0\xe0"

    def test_collection_marker_written_once(self, pkg_path):
        with PackageWriter(pkg_path) as writer:
            writer.end_section()
            writer.end_section()
            writer.end_section()
            assert writer.mode is WritingMode.COMPONENTS
            writer.write_data(b"<?php 1;", "a.php")
            writer.write_data(b"<?php 2;", "b.php")
        expected = (
            PREAMBLE
            + b"\xa5"
            + _entry(b"a.php", b"<?php 1;")
            + _entry(b"b.php", b"<?php 2;")
            + b"\xe0\xe0"
        )
        assert pkg_path.read_bytes() == expected

    def test_skipped_sections_leave_no_marker(self, pkg_path):
        writer = PackageWriter(pkg_path)
        for _ in range(4):
            writer.end_section()
        assert writer.mode is WritingMode.RESOURCES
        writer.write_data(b"\x89PNG", "logo.png")
        writer.end_section()
        assert writer.closed
        data = pkg_path.read_bytes()
        assert data == PREAMBLE + b"\xa6" + _entry(b"logo.png", b"\x89PNG") + b"\xe0\xe0"

    def test_full_sequence(self, pkg_path):
        writer = PackageWriter(pkg_path)
        writer.write_data(b"header")
        writer.write_data(b"assembly")
        writer.write_data(b"unit", "main")
        writer.end_section()
        writer.write_data(b"code", "src/main.php")
        writer.end_section()
        writer.write_data(b"img", "logo.png")
        writer.end_section()
        assert writer.mode is WritingMode.CLOSED
        data = pkg_path.read_bytes()
        assert data.endswith(_entry(b"logo.png", b"img") + b"\xe0\xe0")
        assert data.index(b"\xa4") < data.index(b"\xa5") < data.index(b"\xa6")

    def test_empty_payload(self, pkg_path):
        with PackageWriter(pkg_path) as writer:
            writer.end_section()
            writer.end_section()
            writer.write_data(b"", "empty")
        assert _entry(b"empty", b"") in pkg_path.read_bytes()

    def test_missing_name_in_collection(self, pkg_path):
        with PackageWriter(pkg_path) as writer:
            writer.end_section()
            writer.end_section()
            with pytest.raises(ValueError, match="required"):
                writer.write_data(b"x")
            with pytest.raises(ValueError):
                writer.write_data(b"x", "")

    def test_terminate_lead_name_accepted(self, pkg_path):
        with PackageWriter(pkg_path) as writer:
            writer.end_section()
            writer.end_section()
            writer.end_section()
            # U+0800 encodes as E0 A0 80, never E0 E0
            writer.write_data(b"x", "\u0800x")
            writer.write_data(b"y", "ไทย.php")
            assert writer.mode is WritingMode.COMPONENTS
        assert pkg_path.read_bytes() == (
            PREAMBLE + b"\xa5"
            + _entry("\u0800x".encode("utf-8"), b"x")
            + _entry("ไทย.php".encode("utf-8"), b"y")
            + b"\xe0\xe0"
        )

    def test_memoryview_sized_in_bytes(self, pkg_path):
        view = memoryview(array("H", [1, 2, 3]))
        assert len(view) == 3
        with PackageWriter(pkg_path) as writer:
            writer.end_section()
            writer.end_section()
            writer.end_section()
            writer.write_data(view, "a.bin")
        expected = PREAMBLE + b"\xa5" + _entry(b"a.bin", view.tobytes()) + b"\xe0\xe0"
        assert pkg_path.read_bytes() == expected

        with PackageReader(pkg_path) as reader:
            ref = reader.find("a.bin")
            assert ref.size == 6
            assert reader.read_component(ref) == view.tobytes()

    def test_non_bytes_rejected(self, pkg_path):
        with PackageWriter(pkg_path) as writer:
            with pytest.raises(TypeError, match="bytes"):
                writer.write_data("text")

    def test_duplicate_name_warns(self, pkg_path, caplog):
        with caplog.at_level(logging.WARNING, logger="nccpkg._format.writer"):
            with PackageWriter(pkg_path) as writer:
                writer.end_section()
                writer.end_section()
                writer.write_data(b"1", "a.php")
                writer.write_data(b"2", "a.php")
        assert "Duplicate entry 'a.php'" in caplog.text

    def test_same_name_in_different_sections_is_fine(self, pkg_path, caplog):
        with caplog.at_level(logging.WARNING, logger="nccpkg._format.writer"):
            with PackageWriter(pkg_path) as writer:
                writer.end_section()
                writer.end_section()
                writer.write_data(b"1", "shared")
                writer.end_section()
                writer.write_data(b"2", "shared")
        assert "Duplicate" not in caplog.text


# ---------------------------------------------------------------------------
# Closing
# ---------------------------------------------------------------------------

class TestWriterClose:

    def test_write_after_close(self, pkg_path):
        writer = PackageWriter(pkg_path)
        writer.close()
        with pytest.raises(PackageClosedError):
            writer.write_data(b"x")
        with pytest.raises(PackageClosedError):
            writer.end_section()

    def test_close_idempotent(self, pkg_path):
        writer = PackageWriter(pkg_path)
        writer.close()
        writer.close()
        assert pkg_path.read_bytes() == PREAMBLE + b"\xe0\xe0"

    def test_close_after_resources_end(self, pkg_path):
        writer = PackageWriter(pkg_path)
        for _ in range(5):
            writer.end_section()
        writer.close()
        # Only one final TERMINATE
        assert pkg_path.read_bytes() == PREAMBLE + b"\xe0\xe0"

    def test_context_manager_terminates_on_error(self, pkg_path):
        with pytest.raises(RuntimeError):
            with PackageWriter(pkg_path) as writer:
                writer.write_data(b"header")
                raise RuntimeError("boom")
        assert writer.closed
        assert pkg_path.read_bytes().endswith(b"header\xe0\xe0\xe0\xe0")

    def test_bytes_written_after_close(self, pkg_path):
        writer = PackageWriter(pkg_path)
        writer.write_data(b"abc")
        writer.close()
        assert writer.bytes_written == pkg_path.stat().st_size
