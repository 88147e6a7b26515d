"""
Structured records stored in HEADER, ASSEMBLY and EXECUTION_UNITS payloads.

Records are plain dataclasses serialized as MessagePack maps. Unknown keys
are ignored on decode so newer writers stay readable by older readers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, TypeVar

import msgpack

from nccpkg._format.errors import RecordDecodeError

R = TypeVar("R", bound="_Record")


class _Record:
    """to_dict / from_dict shared by every record type."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls: type[R], data: dict[str, Any]) -> R:
        if not isinstance(data, dict):
            raise RecordDecodeError(
                f"{cls.__name__} record must be a map, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        try:
            return cls(**{k: v for k, v in data.items() if k in known})
        except (TypeError, ValueError) as e:
            raise RecordDecodeError(f"Invalid {cls.__name__} record: {e}") from e


@dataclass
class Header(_Record):
    """Package-wide build information and data-level flags."""

    build_number: str | None = None
    entry_point: str | None = None
    compressed: bool = False
    compression_level: int | None = None
    encrypted: bool = False
    kdf_salt: bytes | None = None
    statically_linked: bool = False
    defined_constants: dict[str, str] = field(default_factory=dict)
    dependencies: dict[str, str] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class Assembly(_Record):
    """Package identity."""

    name: str
    package: str
    version: str
    uuid: str | None = None
    description: str | None = None
    company: str | None = None
    product: str | None = None
    copyright: str | None = None
    trademark: str | None = None

    def __post_init__(self) -> None:
        for attr in ("name", "package", "version"):
            value = getattr(self, attr)
            if not isinstance(value, str) or not value:
                raise ValueError(f"Assembly {attr} must be a non-empty string")


@dataclass
class ExecutionUnit(_Record):
    """How to run an entry point shipped in the package."""

    name: str
    type: str = "php"
    mode: str = "auto"
    entry: str = ""
    working_directory: str | None = None
    arguments: list[str] | None = None
    environment: dict[str, str] | None = None
    required_files: list[str] | None = None
    timeout: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Execution unit name must be a non-empty string")
        if self.timeout is not None and (not isinstance(self.timeout, int) or self.timeout <= 0):
            raise ValueError("Execution unit timeout must be a positive integer")


def pack_record(record: _Record) -> bytes:
    """Serialize a record to MessagePack bytes."""
    return msgpack.packb(record.to_dict(), use_bin_type=True)


def unpack_record(data: bytes, cls: type[R]) -> R:
    """Deserialize MessagePack bytes into ``cls``.

    Raises RecordDecodeError if the bytes are not a valid record.
    """
    try:
        obj = msgpack.unpackb(data, raw=False)
    except Exception as e:
        # msgpack raises a mix of ValueError/UnpackException subclasses
        raise RecordDecodeError(f"Corrupted {cls.__name__} record: {e}") from e
    return cls.from_dict(obj)
