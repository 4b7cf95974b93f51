"""
Deterministic content hashing.

SHA-256 over normalized bytes, rendered as 64 lowercase hex characters. The
hex form is the primary key everywhere; the 32 raw bytes are what the ledger
stores.
"""

import hashlib
import re
from typing import Iterable, Union

from truthchain.core.errors import MediaValidationError

HASH_HEX_LENGTH = 64
HASH_BYTE_LENGTH = 32

_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of the given bytes."""
    return hashlib.sha256(data).hexdigest()


def validate_hash(value: str) -> str:
    """Return the canonical form of a hex content hash or raise MediaValidationError."""
    if not isinstance(value, str):
        raise MediaValidationError("Hash must be a string")

    normalized = value.lower()
    if len(normalized) != HASH_HEX_LENGTH:
        raise MediaValidationError(
            f"Hash must be {HASH_HEX_LENGTH} hex characters (SHA-256), got {len(normalized)}",
            details={"length": len(normalized)},
        )
    if not _HASH_PATTERN.match(normalized):
        raise MediaValidationError("Hash must contain only hexadecimal characters")
    return normalized


def hash_to_bytes(value: str) -> bytes:
    return bytes.fromhex(validate_hash(value))


def bytes_to_hash(value: Union[bytes, Iterable[int]]) -> str:
    """Hex form of a raw digest; accepts the list-of-ints form JSON-RPC returns."""
    return bytes(value).hex()
