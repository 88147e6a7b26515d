"""
Package facade — build, load and extract whole packages.

Drives PackageWriter through every section in canonical order and
PackageReader back, applying the data-level payload codec to components
and resources. Writes are atomic (temp file + os.replace) so a failed
build never leaves a half-written package at the target path.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable

from nccpkg._format.errors import MalformedPackageError, PackageError, PackageExistsError
from nccpkg._format.reader import PackageReader
from nccpkg._format.references import ExecutionUnitReference, PackageReference
from nccpkg._format.writer import PackageWriter
from nccpkg.payload import PayloadCodec
from nccpkg.records import Assembly, ExecutionUnit, Header, pack_record

log = logging.getLogger(__name__)

DEFAULT_COMPONENT_EXTENSIONS = (".php",)


@dataclass
class Package:
    """In-memory view of a complete package.

    Usage:
        pkg = Package(Assembly("app", "com.example.app", "1.0.0"))
        pkg.components["src/main.php"] = b"<?php echo 1;"
        pkg.write("app.ncc", compression_level=9)
        same = Package.load("app.ncc")
    """

    assembly: Assembly
    header: Header = field(default_factory=Header)
    execution_units: dict[str, ExecutionUnit] = field(default_factory=dict)
    components: dict[str, bytes] = field(default_factory=dict)
    resources: dict[str, bytes] = field(default_factory=dict)

    def add_execution_unit(self, unit: ExecutionUnit) -> None:
        self.execution_units[unit.name] = unit

    def _write_sections(self, writer: PackageWriter, codec: PayloadCodec, header: Header) -> None:
        writer.write_data(pack_record(header))
        writer.write_data(pack_record(self.assembly))

        for name, unit in self.execution_units.items():
            writer.write_data(pack_record(unit), name)
        writer.end_section()

        for name, data in self.components.items():
            writer.write_data(codec.encode(data), name)
        writer.end_section()

        for name, data in self.resources.items():
            writer.write_data(codec.encode(data), name)
        writer.end_section()

    def write(
        self,
        path: str | Path,
        *,
        overwrite: bool = False,
        password: str | None = None,
        compression_level: int | None = None,
        prefix: bytes = b"",
    ) -> int:
        """Write the package atomically. Returns bytes written."""
        path = Path(path)
        if not overwrite and path.exists():
            raise PackageExistsError(f"File '{path}' already exists")

        codec, salt = PayloadCodec.from_password(password, compression_level)
        header = codec.apply_to(replace(self.header), salt)

        dir_name = path.parent
        dir_name.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(dir_name), suffix=".ncc.tmp")
        os.close(fd)
        try:
            with PackageWriter(tmp_path, overwrite=True, prefix=prefix) as writer:
                self._write_sections(writer, codec, header)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        size = path.stat().st_size
        log.info(
            "Wrote %s: %d execution unit(s), %d component(s), %d resource(s), %d bytes",
            path, len(self.execution_units), len(self.components), len(self.resources), size,
        )
        return size

    @classmethod
    def from_reader(cls, reader: PackageReader, *, password: str | None = None) -> Package:
        """Materialize every entry of an open reader."""
        assembly = reader.assembly
        if assembly is None:
            raise MalformedPackageError(f"Package '{reader.path}' has no assembly")
        header = reader.header
        codec = PayloadCodec.from_header(header, password)

        return cls(
            assembly=assembly,
            header=header or Header(),
            execution_units={
                name: reader.read_execution_unit(ref)
                for name, ref in reader.execution_unit_references.items()
            },
            components={
                name: codec.decode(reader.read_component(ref))
                for name, ref in reader.component_references.items()
            },
            resources={
                name: codec.decode(reader.read_resource(ref))
                for name, ref in reader.resource_references.items()
            },
        )

    @classmethod
    def load(
        cls,
        path: str | Path,
        *,
        password: str | None = None,
        strict: bool = False,
    ) -> Package:
        with PackageReader(path, strict=strict) as reader:
            return cls.from_reader(reader, password=password)

    @classmethod
    def from_directory(
        cls,
        source: str | Path,
        assembly: Assembly,
        *,
        component_extensions: Iterable[str] = DEFAULT_COMPONENT_EXTENSIONS,
        header: Header | None = None,
    ) -> Package:
        """Collect a source tree: component-extension files become components, the rest resources."""
        source = Path(source)
        if not source.is_dir():
            raise NotADirectoryError(f"Source '{source}' is not a directory")
        extensions = {ext.lower() for ext in component_extensions}

        pkg = cls(assembly=assembly, header=header or Header())
        for file_path in sorted(p for p in source.rglob("*") if p.is_file()):
            name = file_path.relative_to(source).as_posix()
            if file_path.suffix.lower() in extensions:
                pkg.components[name] = file_path.read_bytes()
            else:
                pkg.resources[name] = file_path.read_bytes()
        log.debug(
            "Collected %d component(s) and %d resource(s) from %s",
            len(pkg.components), len(pkg.resources), source,
        )
        return pkg


def extract_to_directory(
    reader: PackageReader,
    destination: str | Path,
    codec: PayloadCodec,
    names: Iterable[str] | None = None,
) -> list[Path]:
    """Write component and resource payloads below ``destination``.

    With ``names``, only those entries are extracted (looked up with
    ``reader.find``). Returns the written paths.

    Raises:
        PackageError: A requested name is not in the package.
        ValueError: An entry name would land outside ``destination``.
    """
    destination = Path(destination).resolve()

    references: list[PackageReference]
    if names is None:
        references = [
            *reader.component_references.values(),
            *reader.resource_references.values(),
        ]
    else:
        references = []
        for name in names:
            reference = reader.find(name)
            if reference is None:
                raise PackageError(f"Entry '{name}' not found in package")
            references.append(reference)

    written = []
    for reference in references:
        if isinstance(reference, ExecutionUnitReference):
            log.warning("Skipping execution unit %r (not a file payload)", reference.name)
            continue
        target = (destination / reference.name).resolve()
        if not target.is_relative_to(destination) or target == destination:
            raise ValueError(f"Entry name escapes destination: {reference.name!r}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(codec.decode(reader.read(reference)))
        written.append(target)
        log.debug("Extracted %s -> %s", reference.name, target)
    return written
