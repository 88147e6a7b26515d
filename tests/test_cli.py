"""
Tests for the nccpkg command line — pack, list, inspect, extract.
"""

from __future__ import annotations

import json

import pytest

from nccpkg.cli import main
from nccpkg._format.reader import PackageReader

try:
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM  # noqa: F401

    HAS_CRYPTO = True
except ImportError:
    HAS_CRYPTO = False

skip_no_crypto = pytest.mark.skipif(
    not HAS_CRYPTO,
    reason="cryptography package not installed",
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("NCCPKG_CONFIG", str(tmp_path / "absent.toml"))
    monkeypatch.delenv("NCCPKG_PASSWORD", raising=False)


@pytest.fixture
def source(tmp_path):
    src = tmp_path / "src"
    (src / "assets").mkdir(parents=True)
    (src / "main.php").write_bytes(b"<?php echo 'hello';")
    (src / "assets" / "logo.png").write_bytes(b"\x89PNG\r\n")
    return src


@pytest.fixture
def packed(source, tmp_path, capsys):
    out = tmp_path / "app.ncc"
    main([
        "pack", str(source), "-o", str(out),
        "--name", "app", "--package", "com.example.app", "--version", "1.0.0",
        "--exec", "main:main.php",
    ])
    capsys.readouterr()
    return out


def _exit_code(argv) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestCLI:

    def test_no_command_prints_usage(self, capsys):
        assert _exit_code([]) == 0
        assert "nccpkg pack" in capsys.readouterr().out

    def test_pack(self, source, tmp_path, capsys):
        out = tmp_path / "app.ncc"
        main([
            "pack", str(source), "-o", str(out),
            "--name", "app", "--package", "com.example.app", "--version", "1.0.0",
        ])
        text = capsys.readouterr().out
        assert "Packed" in text
        assert "components:      1" in text
        with PackageReader(out) as reader:
            assert reader.header.compressed is True
            assert reader.header.compression_level == 9
            assert set(reader.component_references) == {"main.php"}
            assert set(reader.resource_references) == {"assets/logo.png"}

    def test_pack_no_compress(self, source, tmp_path, capsys):
        out = tmp_path / "app.ncc"
        main([
            "pack", str(source), "-o", str(out), "--no-compress",
            "--name", "app", "--package", "com.example.app", "--version", "1.0.0",
        ])
        with PackageReader(out) as reader:
            assert reader.header.compressed is False
            assert reader.read_component(reader.find("main.php")) == b"<?php echo 'hello';"

    def test_pack_with_stub(self, source, tmp_path, capsys):
        stub = tmp_path / "stub.php"
        stub.write_bytes(b"<?php /* bootstrap */ __halt_compiler();")
        out = tmp_path / "app.ncc"
        main([
            "pack", str(source), "-o", str(out), "--stub", str(stub),
            "--name", "app", "--package", "com.example.app", "--version", "1.0.0",
        ])
        with PackageReader(out) as reader:
            assert reader.start_offset == stub.stat().st_size

    def test_pack_existing_output(self, packed, source, capsys):
        argv = [
            "pack", str(source), "-o", str(packed),
            "--name", "app", "--package", "com.example.app", "--version", "2.0.0",
        ]
        assert _exit_code(argv) == 1
        assert "already exists" in capsys.readouterr().err

        main(argv + ["--force"])
        with PackageReader(packed) as reader:
            assert reader.assembly.version == "2.0.0"

    def test_pack_bad_exec(self, source, tmp_path, capsys):
        argv = [
            "pack", str(source), "-o", str(tmp_path / "x.ncc"),
            "--name", "app", "--package", "com.example.app", "--version", "1.0.0",
            "--exec", "no-colon",
        ]
        assert _exit_code(argv) == 1
        assert "NAME:ENTRY" in capsys.readouterr().err

    def test_pack_missing_source(self, tmp_path, capsys):
        argv = [
            "pack", str(tmp_path / "nope"), "-o", str(tmp_path / "x.ncc"),
            "--name", "app", "--package", "com.example.app", "--version", "1.0.0",
        ]
        assert _exit_code(argv) == 1
        assert "Error:" in capsys.readouterr().err

    def test_list(self, packed, capsys):
        main(["list", str(packed)])
        lines = capsys.readouterr().out.strip().splitlines()
        kinds = [line.split("\t")[0] for line in lines]
        names = [line.split("\t")[1] for line in lines]
        assert kinds == ["execution_unit", "component", "resource"]
        assert names == ["main", "main.php", "assets/logo.png"]

    def test_inspect(self, packed, capsys):
        main(["inspect", str(packed)])
        text = capsys.readouterr().out
        assert "format version: 1.00" in text
        assert "com.example.app" in text
        assert "entry point:    main" in text
        assert "entry=main.php" in text

    def test_inspect_compressed_without_level(self, tmp_path, capsys):
        from nccpkg._format.writer import PackageWriter
        from nccpkg.records import Assembly, Header, pack_record

        path = tmp_path / "nolevel.ncc"
        with PackageWriter(path) as writer:
            writer.write_data(pack_record(Header(compressed=True, compression_level=None)))
            writer.write_data(pack_record(Assembly(name="app", package="com.example.app", version="1.0.0")))
        main(["inspect", str(path)])
        assert "compressed:     yes (level 9)" in capsys.readouterr().out

    def test_inspect_json(self, packed, capsys):
        main(["inspect", str(packed), "--json"])
        data = json.loads(capsys.readouterr().out)
        assert data["package_version"] == "1.00"
        assert data["start_offset"] == 0
        assert data["assembly"]["name"] == "app"
        assert data["execution_units"]["main"]["entry"] == "main.php"
        assert [e["name"] for e in data["entries"]] == ["main", "main.php", "assets/logo.png"]

    def test_extract(self, packed, source, tmp_path, capsys):
        out = tmp_path / "out"
        main(["extract", str(packed), "-o", str(out)])
        assert "Extracted 2 file(s)" in capsys.readouterr().out
        assert (out / "main.php").read_bytes() == (source / "main.php").read_bytes()
        assert (out / "assets" / "logo.png").read_bytes() == b"\x89PNG\r\n"

    def test_extract_single(self, packed, tmp_path, capsys):
        out = tmp_path / "out"
        main(["extract", str(packed), "-o", str(out), "--name", "assets/logo.png"])
        assert not (out / "main.php").exists()
        assert (out / "assets" / "logo.png").is_file()

    def test_extract_missing_name(self, packed, tmp_path, capsys):
        assert _exit_code(["extract", str(packed), "-o", str(tmp_path), "--name", "nope"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_not_a_package(self, tmp_path, capsys):
        bogus = tmp_path / "bogus.ncc"
        bogus.write_bytes(b"hello world")
        assert _exit_code(["list", str(bogus)]) == 1
        assert "missing signature" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        assert _exit_code(["inspect", str(tmp_path / "missing.ncc")]) == 1
        assert "does not exist" in capsys.readouterr().err

    def test_strict_from_config(self, tmp_path, monkeypatch, capsys):
        from nccpkg._format.spec import SIGNATURE, encode_size

        def entry(name, data):
            return name + b"\xe1" + encode_size(len(data)) + b"\xe1" + data + b"\xe0\xe0"

        path = tmp_path / "dup.ncc"
        path.write_bytes(
            SIGNATURE + b"\xa1" + b"1.00" + b"\xe0\xe0"
            + b"\xa5" + entry(b"a.php", b"1") + entry(b"a.php", b"2")
            + b"\xe0\xe0"
        )
        main(["list", str(path)])
        assert capsys.readouterr().out.count("a.php") == 1

        config = tmp_path / "nccpkg.toml"
        config.write_text("strict = true\n")
        assert _exit_code(["--config", str(config), "list", str(path)]) == 1
        assert "Duplicate" in capsys.readouterr().err

    @skip_no_crypto
    def test_encrypted_roundtrip(self, source, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("NCCPKG_PASSWORD", "hunter2")
        out = tmp_path / "secret.ncc"
        main([
            "pack", str(source), "-o", str(out), "--encrypt",
            "--name", "app", "--package", "com.example.app", "--version", "1.0.0",
        ])
        assert b"hello" not in out.read_bytes()

        main(["extract", str(out), "-o", str(tmp_path / "plain")])
        assert (tmp_path / "plain" / "main.php").read_bytes() == b"<?php echo 'hello';"

        monkeypatch.setenv("NCCPKG_PASSWORD", "wrong")
        assert _exit_code(["extract", str(out), "-o", str(tmp_path / "bad")]) == 1
        assert "Decryption failed" in capsys.readouterr().err
