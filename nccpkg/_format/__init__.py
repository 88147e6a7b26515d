"""
Package container format engine.

The container (signature-located, section-based, size-prefixed) stores a
package's header, assembly, execution units, components and resources.
Writers append sections in canonical order; readers index entries in one
pass and read payloads on demand.

Format: <A0>NCCPKG<E0E0> + version "1.00"
"""

from nccpkg._format.spec import FORMAT_VERSION, SIGNATURE, Marker, WritingMode
from nccpkg._format.references import (
    PackageReference,
    ExecutionUnitReference,
    ComponentReference,
    ResourceReference,
)
from nccpkg._format.writer import PackageWriter
from nccpkg._format.reader import PackageReader
