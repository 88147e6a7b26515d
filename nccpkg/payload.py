"""
Data-level transforms for component and resource payloads.

- Compression: raw DEFLATE (stdlib zlib), levels 1-9
- Encryption: AES-256-GCM (requires `cryptography` package), key derived
  with PBKDF2-HMAC-SHA256 from a password and the salt kept in the header

Order on write is compress, then encrypt. The container core never sees
any of this: SIZE is always the stored (transformed) length.

The `cryptography` package is lazily imported; a missing dependency
produces a clear error message only when encryption is actually used.

Install with: pip install nccpkg[crypto]
"""

from __future__ import annotations

import hashlib
import logging
import os
import zlib

from nccpkg import (
    DEFAULT_COMPRESSION_LEVEL,
    KDF_ITERATIONS,
    KEY_SIZE,
    MAX_COMPRESSION_LEVEL,
    MIN_COMPRESSION_LEVEL,
    NONCE_SIZE,
    SALT_SIZE,
)
from nccpkg._format.errors import MalformedPackageError, PayloadDecryptError
from nccpkg.records import Header

log = logging.getLogger(__name__)

_TAG_SIZE = 16  # GCM authentication tag


def _import_cryptography():
    """Lazily import the cryptography package.

    Raises ImportError with a helpful message if not installed.
    """
    try:
        from cryptography.hazmat.primitives.ciphers.aead import AESGCM

        return AESGCM
    except ImportError:
        raise ImportError(
            "cryptography is required for encrypted packages. "
            "Install with: pip install nccpkg[crypto]"
        )


def clamp_compression_level(level: int) -> int:
    """Clamp a DEFLATE level into 1-9, warning when it had to move."""
    if level > MAX_COMPRESSION_LEVEL:
        log.warning("Compression level %d exceeds maximum, using %d", level, MAX_COMPRESSION_LEVEL)
        return MAX_COMPRESSION_LEVEL
    if level < MIN_COMPRESSION_LEVEL:
        log.warning("Compression level %d below minimum, using %d", level, MIN_COMPRESSION_LEVEL)
        return MIN_COMPRESSION_LEVEL
    return level


def derive_key(password: str, salt: bytes | None = None) -> tuple[bytes, bytes]:
    """Derive an AES-256 key from a password using PBKDF2-HMAC-SHA256.

    Args:
        password: The password to derive from.
        salt: Optional 16-byte salt. Generated if not provided.

    Returns:
        (key, salt) tuple. The salt belongs in Header.kdf_salt.
    """
    if salt is None:
        salt = os.urandom(SALT_SIZE)
    if len(salt) != SALT_SIZE:
        raise ValueError(f"Salt must be {SALT_SIZE} bytes")

    key = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        KDF_ITERATIONS,
        dklen=KEY_SIZE,
    )
    return key, salt


def deflate(data: bytes, level: int) -> bytes:
    compressor = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def inflate(data: bytes) -> bytes:
    try:
        return zlib.decompress(data, -zlib.MAX_WBITS)
    except zlib.error as e:
        raise MalformedPackageError(f"Corrupted compressed payload: {e}") from e


class PayloadCodec:
    """Reversible payload transform described by a package header.

    Usage:
        codec = PayloadCodec(compression_level=9, key=key)
        stored = codec.encode(source)
        assert codec.decode(stored) == source
    """

    def __init__(self, compression_level: int | None = None, key: bytes | None = None) -> None:
        if compression_level is not None:
            compression_level = clamp_compression_level(compression_level)
        if key is not None and len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes")
        self.compression_level = compression_level
        self._key = key

    @property
    def compressed(self) -> bool:
        return self.compression_level is not None

    @property
    def encrypted(self) -> bool:
        return self._key is not None

    @classmethod
    def from_password(
        cls,
        password: str | None,
        compression_level: int | None = None,
    ) -> tuple[PayloadCodec, bytes | None]:
        """Build a writing codec. Returns (codec, kdf_salt or None)."""
        if password is None:
            return cls(compression_level), None
        key, salt = derive_key(password)
        return cls(compression_level, key), salt

    @classmethod
    def from_header(cls, header: Header | None, password: str | None = None) -> PayloadCodec:
        """Rebuild the codec a package was written with."""
        if header is None:
            return cls()
        level = (header.compression_level or DEFAULT_COMPRESSION_LEVEL) if header.compressed else None
        if not header.encrypted:
            return cls(level)
        if password is None:
            raise PayloadDecryptError("Package is encrypted; a password is required")
        if not header.kdf_salt:
            raise PayloadDecryptError("Encrypted package header has no key derivation salt")
        key, _ = derive_key(password, header.kdf_salt)
        return cls(level, key)

    def apply_to(self, header: Header, salt: bytes | None = None) -> Header:
        """Record this codec's flags on a header (mutates and returns it)."""
        header.compressed = self.compressed
        header.compression_level = self.compression_level
        header.encrypted = self.encrypted
        header.kdf_salt = salt if self.encrypted else None
        return header

    def encode(self, data: bytes) -> bytes:
        if self.compression_level is not None:
            data = deflate(data, self.compression_level)
        if self._key is not None:
            AESGCM = _import_cryptography()
            nonce = os.urandom(NONCE_SIZE)
            data = nonce + AESGCM(self._key).encrypt(nonce, data, None)
        return data

    def decode(self, data: bytes) -> bytes:
        if self._key is not None:
            AESGCM = _import_cryptography()
            if len(data) < NONCE_SIZE + _TAG_SIZE:
                raise PayloadDecryptError("Encrypted payload too short")
            try:
                data = AESGCM(self._key).decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
            except Exception:
                raise PayloadDecryptError(
                    "Decryption failed: wrong password or tampered payload"
                ) from None
        if self.compression_level is not None:
            data = inflate(data)
        return data
