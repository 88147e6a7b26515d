"""
Package Container Format Specification v1.00.

Layout:
    <A0>"NCCPKG"<E0E0>                        <- Signature (may follow arbitrary leading bytes)
    <A1><4-byte version><E0E0>                <- Version record
    [<A2><size><E1><bytes><E0E0>]             <- Header (singleton)
    [<A3><size><E1><bytes><E0E0>]             <- Assembly (singleton)
    [<A4>{<name><E1><size><E1><bytes><E0E0>}*] <- Execution units (collection)
    [<A5>{<name><E1><size><E1><bytes><E0E0>}*] <- Components (collection)
    [<A6>{<name><E1><size><E1><bytes><E0E0>}*] <- Resources (collection)
    <E0E0>                                    <- End of package

Sizes:
    - <size> is a 64-bit unsigned little-endian integer
    - Sizes are authoritative: payload bytes are never scanned for markers,
      so payloads may contain any byte sequence

Names:
    - UTF-8, non-empty, no SOFT_TERMINATE byte anywhere
    - Must not start with a section marker byte. A leading E0 is fine since
      valid UTF-8 never holds E0 E0, and the reader compares two bytes
      against TERMINATE before taking a name
"""

from __future__ import annotations

import struct
from enum import Enum, IntEnum


class Marker(bytes, Enum):
    """Every structural byte sequence of the container grammar."""

    START_PACKAGE = b"\xa0"                     # True start of the package, always followed by MAGIC_BYTES
    MAGIC_BYTES = b"\x4e\x43\x43\x50\x4b\x47"   # NCCPKG, always followed by TERMINATE
    PACKAGE_VERSION = b"\xa1"                   # Start of the version record
    HEADER = b"\xa2"
    ASSEMBLY = b"\xa3"
    EXECUTION_UNITS = b"\xa4"
    COMPONENTS = b"\xa5"
    RESOURCES = b"\xa6"
    TERMINATE = b"\xe0\xe0"                     # End of entry, section or package
    SOFT_TERMINATE = b"\xe1"                    # Separates fields within one entry


class WritingMode(IntEnum):
    """Section state machine, in canonical order. Values double as the order rank."""

    HEADER = 0
    ASSEMBLY = 1
    EXECUTION_UNITS = 2
    COMPONENTS = 3
    RESOURCES = 4
    CLOSED = 5

    @property
    def marker(self) -> Marker:
        if self is WritingMode.CLOSED:
            raise ValueError("CLOSED has no section marker")
        return _MODE_MARKERS[self]

    @property
    def is_collection(self) -> bool:
        return self in (
            WritingMode.EXECUTION_UNITS,
            WritingMode.COMPONENTS,
            WritingMode.RESOURCES,
        )

    def next(self) -> WritingMode:
        """The single transition: the next section in canonical order."""
        if self is WritingMode.CLOSED:
            raise ValueError("CLOSED is terminal")
        return WritingMode(self + 1)


_MODE_MARKERS = {
    WritingMode.HEADER: Marker.HEADER,
    WritingMode.ASSEMBLY: Marker.ASSEMBLY,
    WritingMode.EXECUTION_UNITS: Marker.EXECUTION_UNITS,
    WritingMode.COMPONENTS: Marker.COMPONENTS,
    WritingMode.RESOURCES: Marker.RESOURCES,
}

# Section marker byte value -> section, for reader dispatch
SECTION_BY_MARKER: dict[int, WritingMode] = {
    marker[0]: mode for mode, marker in _MODE_MARKERS.items()
}

# The locatable signature
SIGNATURE = Marker.START_PACKAGE + Marker.MAGIC_BYTES + Marker.TERMINATE

# Size field: 8-byte unsigned, little-endian
SIZE_STRUCT = struct.Struct("<Q")
SIZE_WIDTH = SIZE_STRUCT.size
MAX_ENTRY_SIZE = 2 ** (8 * SIZE_WIDTH) - 1

# Version record
FORMAT_VERSION = "1.00"
VERSION_WIDTH = 4

# Supported format versions (reject unknown versions)
SUPPORTED_FORMAT_VERSIONS = frozenset({"1.00"})

# Safety limits
MAX_NAME_LENGTH = 4096                  # Max encoded bytes in an entry name
DEFAULT_SCAN_CHUNK_SIZE = 8192          # Signature scan read size

# File extension
EXTENSION = ".ncc"

_SOFT_TERMINATE_BYTE = Marker.SOFT_TERMINATE[0]


def encode_name(name: str) -> bytes:
    """Validate an entry name and return its encoded form.

    Raises ValueError for names the reader could not frame unambiguously.
    """
    if not isinstance(name, str) or not name:
        raise ValueError("Entry name is required for collection sections")
    try:
        raw = name.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError(f"Entry name is not encodable as UTF-8: {name!r}") from e
    if len(raw) > MAX_NAME_LENGTH:
        raise ValueError(
            f"Entry name is {len(raw)} bytes (max {MAX_NAME_LENGTH}): {name[:32]!r}..."
        )
    if _SOFT_TERMINATE_BYTE in raw:
        raise ValueError(f"Entry name contains the SOFT_TERMINATE byte: {name!r}")
    if raw[0] in SECTION_BY_MARKER:
        raise ValueError(f"Entry name starts with a marker byte: {name!r}")
    return raw


def encode_size(size: int) -> bytes:
    """Pack a payload length into the fixed-width SIZE field."""
    if size < 0:
        raise ValueError(f"Negative size: {size}")
    if size > MAX_ENTRY_SIZE:
        raise OverflowError(f"Size {size} exceeds maximum {MAX_ENTRY_SIZE}")
    return SIZE_STRUCT.pack(size)


def encode_version(version: str) -> bytes:
    """Encode the 4-byte version field."""
    raw = version.encode("ascii")
    if len(raw) != VERSION_WIDTH:
        raise ValueError(f"Version must be {VERSION_WIDTH} ASCII bytes, got {version!r}")
    return raw
