"""
nccpkg — self-locating binary package container.

Architecture:
    Format:   nccpkg._format   signature, section grammar, writer, lazy reader
    Records:  nccpkg.records   MessagePack header/assembly/execution-unit records
    Payloads: nccpkg.payload   optional DEFLATE + AES-256-GCM for entry data
    Facade:   nccpkg.package   whole-package build/load/extract
"""

__version__ = "0.1.0"

# Data-level compression (raw DEFLATE)
MIN_COMPRESSION_LEVEL = 1
MAX_COMPRESSION_LEVEL = 9
DEFAULT_COMPRESSION_LEVEL = 9

# Encryption constants
KDF_ITERATIONS = 600_000  # OWASP 2023 minimum for PBKDF2-HMAC-SHA256
KEY_SIZE = 32  # AES-256
SALT_SIZE = 16  # 128-bit salt
NONCE_SIZE = 12  # AES-GCM standard nonce

# Config file location (overridden by $NCCPKG_CONFIG)
CONFIG_ENV_VAR = "NCCPKG_CONFIG"
CONFIG_DIR = ".ncc"
CONFIG_FILENAME = "nccpkg.toml"

from nccpkg._format import (  # noqa: E402
    PackageReader,
    PackageWriter,
    ComponentReference,
    ExecutionUnitReference,
    ResourceReference,
    PackageReference,
    WritingMode,
)
from nccpkg.records import Assembly, ExecutionUnit, Header  # noqa: E402
from nccpkg.package import Package  # noqa: E402

__all__ = [
    "PackageReader",
    "PackageWriter",
    "PackageReference",
    "ComponentReference",
    "ExecutionUnitReference",
    "ResourceReference",
    "WritingMode",
    "Assembly",
    "ExecutionUnit",
    "Header",
    "Package",
]
