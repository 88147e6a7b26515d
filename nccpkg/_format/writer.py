"""
Writer — emits a package file as a forward-only section state machine.

Sequence:
  1. Signature + version record, written once on construction
  2. HEADER, ASSEMBLY: one unnamed block each, section closes itself
  3. EXECUTION_UNITS, COMPONENTS, RESOURCES: any number of named blocks,
     closed by end_section()
  4. end_section() on RESOURCES (or close()) writes the final TERMINATE

A section marker is only written once the first block of that section is
written, so skipped sections leave no trace in the file.

Not thread-safe: one writer, one caller.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from nccpkg._format.errors import PackageClosedError, PackageExistsError
from nccpkg._format.spec import (
    FORMAT_VERSION, SIGNATURE, Marker, WritingMode,
    encode_name, encode_size, encode_version,
)

log = logging.getLogger(__name__)


class PackageWriter:
    """
    Sequential package writer.

    Usage:
        with PackageWriter("out.ncc", overwrite=True) as writer:
            writer.write_data(header_bytes)            # HEADER
            writer.write_data(assembly_bytes)          # ASSEMBLY
            writer.end_section()                       # no execution units
            writer.write_data(source, "src/main.php")  # COMPONENTS
            writer.end_section()
            writer.write_data(logo, "logo.png")        # RESOURCES
    """

    def __init__(
        self,
        path: str | Path,
        overwrite: bool = False,
        *,
        prefix: bytes = b"",
        version: str = FORMAT_VERSION,
    ) -> None:
        self.path = Path(path)
        if not overwrite and self.path.exists():
            raise PackageExistsError(f"File '{self.path}' already exists")
        if SIGNATURE in prefix:
            raise ValueError("Prefix must not contain the package signature")
        version_bytes = encode_version(version)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.path, "wb")
        self._mode = WritingMode.HEADER
        self._section_started = False
        self._section_names: set[str] = set()

        self._write(prefix, SIGNATURE, Marker.PACKAGE_VERSION, version_bytes, Marker.TERMINATE)
        log.debug("Opened package %s (prefix %d bytes, version %s)", self.path, len(prefix), version)

    @property
    def mode(self) -> WritingMode:
        """The section the next write_data() call targets."""
        return self._mode

    @property
    def closed(self) -> bool:
        return self._mode is WritingMode.CLOSED

    @property
    def bytes_written(self) -> int:
        """Bytes emitted so far (prefix included)."""
        if self._handle.closed:
            return self.path.stat().st_size
        return self._handle.tell()

    def _write(self, *chunks: bytes) -> None:
        try:
            for chunk in chunks:
                self._handle.write(chunk)
        except OSError:
            # Contents are undefined past this point; the writer is unusable.
            self._mode = WritingMode.CLOSED
            self._handle.close()
            raise

    def _ensure_open(self) -> None:
        if self.closed:
            raise PackageClosedError(f"Package writer for '{self.path}' is closed")

    def _advance(self) -> None:
        self._mode = self._mode.next()
        self._section_started = False
        self._section_names.clear()
        log.debug("Writer advanced to %s", self._mode.name)

    def write_data(self, data: bytes, name: str | None = None) -> None:
        """Write one block into the current section.

        HEADER/ASSEMBLY ignore ``name`` and advance automatically after the
        block. Collection sections require a non-empty ``name``.

        Raises:
            PackageClosedError: The writer is closed.
            ValueError: Missing or unframeable name in a collection section.
            OverflowError: The block is larger than the SIZE field can hold.
        """
        self._ensure_open()
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Package data must be bytes, got {type(data).__name__}")
        if isinstance(data, memoryview):
            # len() of a view counts items, SIZE counts bytes
            data = data.cast("B")

        size_field = encode_size(len(data))

        if not self._mode.is_collection:
            self._write(self._mode.marker, size_field, Marker.SOFT_TERMINATE, data, Marker.TERMINATE)
            log.debug("Wrote %s block (%d bytes)", self._mode.name, len(data))
            self._advance()
            return

        name_bytes = encode_name(name)
        if name in self._section_names:
            log.warning("Duplicate entry %r in %s; readers keep the last one", name, self._mode.name)
        self._section_names.add(name)

        chunks = [] if self._section_started else [self._mode.marker]
        chunks += [
            name_bytes, Marker.SOFT_TERMINATE,
            size_field, Marker.SOFT_TERMINATE,
            data, Marker.TERMINATE,
        ]
        self._write(*chunks)
        self._section_started = True
        log.debug("Wrote %s entry %r (%d bytes)", self._mode.name, name, len(data))

    def end_section(self) -> None:
        """Move to the next section. Ending RESOURCES closes the package."""
        self._ensure_open()
        if self._mode is WritingMode.RESOURCES:
            self.close()
            return
        self._advance()

    def close(self) -> None:
        """Write the final TERMINATE and release the file. Idempotent."""
        if self._handle.closed:
            self._mode = WritingMode.CLOSED
            return
        try:
            if not self.closed:
                self._handle.write(Marker.TERMINATE)
                self._handle.flush()
                os.fsync(self._handle.fileno())
        finally:
            self._mode = WritingMode.CLOSED
            self._handle.close()
        log.debug("Closed package %s", self.path)

    def __enter__(self) -> PackageWriter:
        return self

    def __exit__(self, *args) -> None:
        self.close()
