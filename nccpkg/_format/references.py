"""
Reference records — where a named payload lives inside a package file.

A reference never holds payload bytes. The category (execution unit,
component, resource) tells the consumer how to decode what it reads.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PackageReference:
    """Immutable (name, offset, size) triple.

    Attributes:
        name: Entry name as written.
        offset: Absolute byte offset of the payload in the file.
        size: Payload length in bytes.
    """

    name: str
    offset: int
    size: int

    kind = "entry"

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"Negative offset for {self.name!r}: {self.offset}")
        if self.size < 0:
            raise ValueError(f"Negative size for {self.name!r}: {self.size}")

    @property
    def end(self) -> int:
        """Offset one past the last payload byte."""
        return self.offset + self.size


@dataclass(frozen=True)
class ExecutionUnitReference(PackageReference):
    kind = "execution_unit"


@dataclass(frozen=True)
class ComponentReference(PackageReference):
    kind = "component"


@dataclass(frozen=True)
class ResourceReference(PackageReference):
    kind = "resource"
