"""
Reader — lazy, randomly addressable parser for package files.

Speed features:
  - Signature located by a bounded chunked scan (package may follow a stub)
  - One linear pass builds the name -> (offset, size) index; payloads are
    skipped with seek, never read
  - Payloads are fetched on demand by seek + exact read

Strictness:
  - Any marker mismatch, short read or unknown section byte is fatal
  - Sizes are authoritative; payload bytes are never scanned for markers
  - strict=True also rejects reordered/repeated sections and duplicate names
"""

from __future__ import annotations

import io
import logging
import os
import threading
from pathlib import Path
from typing import BinaryIO

from nccpkg._format.errors import (
    DuplicateEntryError, MalformedPackageError, PackageClosedError,
    PackageReadError, SectionOrderError, ShortReadError,
    SignatureNotFoundError, UnknownSectionError, UnsupportedVersionError,
)
from nccpkg._format.references import (
    ComponentReference, ExecutionUnitReference, PackageReference, ResourceReference,
)
from nccpkg._format.spec import (
    DEFAULT_SCAN_CHUNK_SIZE, MAX_NAME_LENGTH, SECTION_BY_MARKER, SIGNATURE,
    SIZE_STRUCT, SIZE_WIDTH, SUPPORTED_FORMAT_VERSIONS, VERSION_WIDTH,
    Marker, WritingMode,
)
from nccpkg.records import Assembly, ExecutionUnit, Header, unpack_record

log = logging.getLogger(__name__)

_TERMINATE_LEAD = Marker.TERMINATE[0]
_NAME_READ_SIZE = 256

_REFERENCE_TYPES: dict[WritingMode, type[PackageReference]] = {
    WritingMode.EXECUTION_UNITS: ExecutionUnitReference,
    WritingMode.COMPONENTS: ComponentReference,
    WritingMode.RESOURCES: ResourceReference,
}


def locate_signature(handle: BinaryIO, chunk_size: int = DEFAULT_SCAN_CHUNK_SIZE) -> int:
    """Return the absolute offset of the first package signature in ``handle``.

    Reads ``chunk_size`` bytes at a time and carries the last
    ``len(SIGNATURE) - 1`` bytes into the next window so a signature split
    across two reads is still found.

    Raises SignatureNotFoundError at end of file.
    """
    if chunk_size < len(SIGNATURE):
        raise ValueError(f"chunk_size must be at least {len(SIGNATURE)} bytes")
    keep = len(SIGNATURE) - 1
    handle.seek(0)
    carry = b""
    base = 0  # absolute offset of carry[0]
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            raise SignatureNotFoundError("Package signature not found")
        window = carry + chunk
        position = window.find(SIGNATURE)
        if position != -1:
            return base + position
        if len(window) > keep:
            base += len(window) - keep
            carry = window[-keep:]
        else:
            carry = window


class PackageIndex:
    """Result of the index pass: version, singleton locations, collection maps."""

    def __init__(self, version: str) -> None:
        self.version = version
        self.header: PackageReference | None = None
        self.assembly: PackageReference | None = None
        self.sections: dict[WritingMode, dict[str, PackageReference]] = {
            mode: {} for mode in _REFERENCE_TYPES
        }

    @property
    def execution_units(self) -> dict[str, PackageReference]:
        return self.sections[WritingMode.EXECUTION_UNITS]

    @property
    def components(self) -> dict[str, PackageReference]:
        return self.sections[WritingMode.COMPONENTS]

    @property
    def resources(self) -> dict[str, PackageReference]:
        return self.sections[WritingMode.RESOURCES]


class PackageReader:
    """
    Package file reader.

    The index pass records only where the header and assembly records sit.
    They are decoded on first `.header` / `.assembly` access and cached.

    Usage:
        with PackageReader("app.ncc") as reader:
            ref = reader.find("src/main.php")
            source = reader.read_component(ref)
    """

    def __init__(
        self,
        path: str | Path,
        *,
        strict: bool = False,
        chunk_size: int = DEFAULT_SCAN_CHUNK_SIZE,
    ) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"File '{self.path}' does not exist")
        if not self.path.is_file():
            raise PackageReadError(f"File '{self.path}' is not a regular file")

        self.strict = strict
        self._lock = threading.Lock()
        self._index: PackageIndex | None = None
        self._header: Header | None = None
        self._assembly: Assembly | None = None

        self._handle = open(self.path, "rb")
        try:
            self.start_offset = locate_signature(self._handle, chunk_size)
        except SignatureNotFoundError:
            self._handle.close()
            raise SignatureNotFoundError(
                f"File '{self.path}' is not a valid package file (missing signature)"
            ) from None
        except BaseException:
            self._handle.close()
            raise
        self._handle.seek(self.start_offset + len(SIGNATURE))
        log.debug("Found package signature in %s at offset %d", self.path, self.start_offset)

    @staticmethod
    def is_package(path: str | Path, chunk_size: int = DEFAULT_SCAN_CHUNK_SIZE) -> bool:
        """Check whether a file contains a package signature."""
        with open(path, "rb") as f:
            try:
                locate_signature(f, chunk_size)
            except SignatureNotFoundError:
                return False
        return True

    # -- low level ---------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._handle.closed:
            raise PackageClosedError(f"Package reader for '{self.path}' is closed")

    def _read_exact(self, size: int, what: str) -> bytes:
        offset = self._handle.tell()
        data = self._handle.read(size)
        if len(data) != size:
            raise ShortReadError(
                f"Unexpected end of file reading {what} at offset {offset} "
                f"(wanted {size} bytes, got {len(data)})"
            )
        return data

    def _expect(self, marker: Marker, what: str) -> None:
        offset = self._handle.tell()
        data = self._read_exact(len(marker), f"{marker.name} after {what}")
        if data != marker:
            raise MalformedPackageError(
                f"Expected {marker.name} after {what} at offset {offset}, got {data.hex()}"
            )

    def _read_size(self, what: str) -> int:
        return SIZE_STRUCT.unpack(self._read_exact(SIZE_WIDTH, f"size of {what}"))[0]

    def _skip(self, size: int, what: str) -> int:
        """Seek over a payload, returning its offset."""
        offset = self._handle.tell()
        if offset + size > self._file_size:
            raise ShortReadError(
                f"{what} at offset {offset} claims {size} bytes, past end of file ({self._file_size})"
            )
        self._handle.seek(offset + size)
        self._expect(Marker.TERMINATE, what)
        return offset

    def _read_name(self, first: bytes) -> str:
        handle = self._handle
        start = handle.tell() - len(first)
        buf = bytearray(first)
        while True:
            position = buf.find(Marker.SOFT_TERMINATE)
            if position != -1:
                handle.seek(start + position + len(Marker.SOFT_TERMINATE))
                raw = bytes(buf[:position])
                break
            if len(buf) > MAX_NAME_LENGTH:
                raise MalformedPackageError(
                    f"Entry name at offset {start} exceeds {MAX_NAME_LENGTH} bytes"
                )
            chunk = handle.read(_NAME_READ_SIZE)
            if not chunk:
                raise ShortReadError(f"Unexpected end of file in entry name at offset {start}")
            buf += chunk
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPackageError(f"Entry name at offset {start} is not UTF-8") from e

    # -- index pass --------------------------------------------------------

    def _parse(self) -> PackageIndex:
        handle = self._handle
        self._file_size = os.fstat(handle.fileno()).st_size
        handle.seek(self.start_offset + len(SIGNATURE))

        self._expect(Marker.PACKAGE_VERSION, "signature")
        raw_version = self._read_exact(VERSION_WIDTH, "package version")
        self._expect(Marker.TERMINATE, f"{VERSION_WIDTH}-byte package version")
        try:
            version = raw_version.decode("ascii")
        except UnicodeDecodeError as e:
            raise MalformedPackageError(f"Package version is not ASCII: {raw_version.hex()}") from e
        if version not in SUPPORTED_FORMAT_VERSIONS:
            raise UnsupportedVersionError(
                f"Unsupported package version: {version!r}. "
                f"Supported: {', '.join(sorted(SUPPORTED_FORMAT_VERSIONS))}"
            )

        index = PackageIndex(version)
        last: WritingMode | None = None
        terminated = False

        while True:
            lead = handle.read(1)
            if not lead:
                break
            if lead[0] == _TERMINATE_LEAD:
                self._expect_terminate_tail()
                terminated = True
                break
            mode = SECTION_BY_MARKER.get(lead[0])
            if mode is None:
                raise UnknownSectionError(
                    f"Unknown section marker 0x{lead[0]:02x} at offset {handle.tell() - 1}"
                )
            if self.strict and last is not None and mode <= last:
                raise SectionOrderError(
                    f"Section {mode.name} at offset {handle.tell() - 1} follows {last.name}"
                )
            last = mode

            if mode.is_collection:
                self._read_collection(mode, index.sections[mode])
            else:
                reference = self._read_singleton(mode)
                if mode is WritingMode.HEADER:
                    index.header = reference
                else:
                    index.assembly = reference

        if not terminated:
            if self.strict:
                raise ShortReadError(f"Package in '{self.path}' ends without TERMINATE")
            log.debug("Package %s ends without TERMINATE", self.path)

        log.debug(
            "Indexed %s: %d execution unit(s), %d component(s), %d resource(s)",
            self.path, len(index.execution_units), len(index.components), len(index.resources),
        )
        return index

    def _expect_terminate_tail(self) -> None:
        offset = self._handle.tell() - 1
        tail = self._read_exact(len(Marker.TERMINATE) - 1, "TERMINATE")
        if tail != Marker.TERMINATE[1:]:
            raise MalformedPackageError(f"Incomplete TERMINATE at offset {offset}")

    def _read_singleton(self, mode: WritingMode) -> PackageReference:
        what = mode.name
        size = self._read_size(what)
        self._expect(Marker.SOFT_TERMINATE, f"{what} size")
        offset = self._skip(size, f"{what} data")
        return PackageReference(mode.name.lower(), offset, size)

    def _read_collection(self, mode: WritingMode, entries: dict[str, PackageReference]) -> None:
        handle = self._handle
        ref_cls = _REFERENCE_TYPES[mode]
        while True:
            peek = handle.read(2)
            if not peek:
                return
            if peek == Marker.TERMINATE or peek[0] in SECTION_BY_MARKER:
                # Not ours: end of package or the next section
                handle.seek(-len(peek), io.SEEK_CUR)
                return

            name = self._read_name(peek)
            size = self._read_size(f"{mode.name} entry {name!r}")
            self._expect(Marker.SOFT_TERMINATE, f"size of {name!r}")
            offset = self._skip(size, f"data of {name!r}")

            if name in entries:
                if self.strict:
                    raise DuplicateEntryError(f"Duplicate {mode.name} entry {name!r}")
                log.warning("Duplicate %s entry %r in %s; keeping the last one", mode.name, name, self.path)
            entries[name] = ref_cls(name, offset, size)

    def _ensure_index(self) -> PackageIndex:
        self._ensure_open()
        if self._index is None:
            with self._lock:
                if self._index is None:
                    # Assigned only on success so a failed pass can be retried
                    self._index = self._parse()
        return self._index

    # -- index accessors ---------------------------------------------------

    @property
    def package_version(self) -> str:
        return self._ensure_index().version

    @property
    def header_reference(self) -> PackageReference | None:
        return self._ensure_index().header

    @property
    def assembly_reference(self) -> PackageReference | None:
        return self._ensure_index().assembly

    @property
    def execution_unit_references(self) -> dict[str, PackageReference]:
        return dict(self._ensure_index().execution_units)

    @property
    def component_references(self) -> dict[str, PackageReference]:
        return dict(self._ensure_index().components)

    @property
    def resource_references(self) -> dict[str, PackageReference]:
        return dict(self._ensure_index().resources)

    @property
    def header(self) -> Header | None:
        """Decoded HEADER record, or None when the package has no header."""
        if self._header is None:
            reference = self.header_reference
            if reference is None:
                return None
            self._header = unpack_record(self._read_payload(reference), Header)
        return self._header

    @property
    def assembly(self) -> Assembly | None:
        """Decoded ASSEMBLY record, or None when the package has no assembly."""
        if self._assembly is None:
            reference = self.assembly_reference
            if reference is None:
                return None
            self._assembly = unpack_record(self._read_payload(reference), Assembly)
        return self._assembly

    def find(self, name: str) -> PackageReference | None:
        """Look a name up in components, then resources, then execution units."""
        index = self._ensure_index()
        for entries in (index.components, index.resources, index.execution_units):
            reference = entries.get(name)
            if reference is not None:
                return reference
        return None

    def get_all_references(self) -> list[PackageReference]:
        index = self._ensure_index()
        return [
            *index.execution_units.values(),
            *index.components.values(),
            *index.resources.values(),
        ]

    # -- payload reads -----------------------------------------------------

    def _read_payload(self, reference: PackageReference) -> bytes:
        if not isinstance(reference, PackageReference):
            raise TypeError(f"Expected a PackageReference, got {type(reference).__name__}")
        self._ensure_open()
        with self._lock:
            self._handle.seek(reference.offset)
            data = self._handle.read(reference.size)
        if len(data) != reference.size:
            raise ShortReadError(
                f"Short read for {reference.name!r} at offset {reference.offset}: "
                f"expected {reference.size} bytes, got {len(data)}"
            )
        return data

    def read_header_bytes(self) -> bytes | None:
        reference = self.header_reference
        return None if reference is None else self._read_payload(reference)

    def read_assembly_bytes(self) -> bytes | None:
        reference = self.assembly_reference
        return None if reference is None else self._read_payload(reference)

    def read_component(self, reference: PackageReference) -> bytes:
        return self._read_payload(reference)

    def read_resource(self, reference: PackageReference) -> bytes:
        return self._read_payload(reference)

    def read_execution_unit(self, reference: PackageReference) -> ExecutionUnit:
        return unpack_record(self._read_payload(reference), ExecutionUnit)

    def read(self, reference: PackageReference) -> bytes | ExecutionUnit:
        """Read any reference, decoding execution units."""
        if isinstance(reference, ExecutionUnitReference):
            return self.read_execution_unit(reference)
        return self._read_payload(reference)

    # -- lifecycle ---------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._handle.closed

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> PackageReader:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"PackageReader({str(self.path)!r}, start_offset={self.start_offset})"
