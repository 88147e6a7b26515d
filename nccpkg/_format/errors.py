"""
Exception taxonomy for the package container format.

    PackageError                      base for everything raised here
    ├── MalformedPackageError         corrupt / non-conforming bytes (fatal)
    │   ├── SignatureNotFoundError
    │   ├── UnsupportedVersionError
    │   ├── UnknownSectionError
    │   ├── ShortReadError
    │   ├── SectionOrderError         strict mode only
    │   ├── DuplicateEntryError       strict mode only
    │   └── RecordDecodeError
    ├── PackageClosedError            operation after close
    ├── PackageExistsError            writer target exists, overwrite disabled
    ├── PackageReadError              path exists but cannot be read as a file
    └── PayloadDecryptError           wrong password or tampered payload

Malformed-format errors also subclass ValueError, and the filesystem ones
subclass the matching OSError types, so callers that only know the builtins
still catch them.
"""

from __future__ import annotations


class PackageError(Exception):
    """Base class for package container errors."""


class MalformedPackageError(PackageError, ValueError):
    """The file does not follow the container grammar. Treat the whole file as corrupt."""


class SignatureNotFoundError(MalformedPackageError):
    """No package signature was found anywhere in the file."""


class UnsupportedVersionError(MalformedPackageError):
    """The package declares a format version this reader does not understand."""


class UnknownSectionError(MalformedPackageError):
    """A byte at a section boundary is not a known section marker."""


class ShortReadError(MalformedPackageError):
    """Fewer bytes were available than a size field or marker promised."""


class SectionOrderError(MalformedPackageError):
    """A section appeared out of canonical order or more than once."""


class DuplicateEntryError(MalformedPackageError):
    """Two entries in one collection section share a name."""


class RecordDecodeError(MalformedPackageError):
    """A structured record payload could not be decoded."""


class PackageClosedError(PackageError):
    """Operation attempted on a closed writer or reader."""


class PackageExistsError(PackageError, FileExistsError):
    """The writer target already exists and overwriting was not requested."""


class PackageReadError(PackageError, OSError):
    """The package path exists but is not a readable regular file."""


class PayloadDecryptError(PackageError, ValueError):
    """Decryption of an entry payload failed."""
