"""
Integrity proofs over arbitrary data.

The Merkle strategy splits data into fixed-size chunks, hashes each chunk and
folds the hashes pairwise (duplicating the last node of an odd level) into a
single root. The result detects tampering anywhere in the data; it does not
provide per-chunk inclusion proofs.
"""

import hashlib
import hmac
import structlog
from abc import ABC, abstractmethod
from typing import List, Optional

from truthchain.core.utils import now_ms, short_hash
from truthchain.models.attestation import ProofRecord

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 1024
MERKLE_ALGORITHM = "SHA-256-MERKLE"
DIGEST_ALGORITHM = "SHA-256"


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def chunk_data(data: bytes, chunk_size: int) -> List[bytes]:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]


def merkle_root(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Hex Merkle root of data split into chunk_size pieces."""
    level = [_sha256(chunk) for chunk in chunk_data(data, chunk_size)]
    if not level:
        return _sha256(b"").hex()

    while len(level) > 1:
        if len(level) % 2 == 1:
            level.append(level[-1])
        level = [_sha256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]

    return level[0].hex()


def verify_proof(data: bytes, proof: ProofRecord) -> bool:
    """
    Recompute the root for data using the proof's own parameters.

    Dispatches on the algorithm tag so proofs from either strategy verify.
    Unknown algorithms and proofs without a root fail closed.
    """
    if not proof.root:
        return False

    if proof.algorithm == MERKLE_ALGORITHM:
        if proof.chunk_size <= 0:
            return False
        expected = merkle_root(data, proof.chunk_size)
    elif proof.algorithm == DIGEST_ALGORITHM:
        expected = hashlib.sha256(data).hexdigest()
    else:
        logger.warning("Unknown proof algorithm", algorithm=proof.algorithm)
        return False

    return hmac.compare_digest(expected, proof.root.lower())


class ProofStrategy(ABC):
    """Produces integrity proofs; chosen once from configuration."""

    name = "abstract"

    @abstractmethod
    def generate(self, data: bytes) -> ProofRecord:
        pass

    def verify(self, data: bytes, proof: ProofRecord) -> bool:
        return verify_proof(data, proof)

    @staticmethod
    def describe(proof: ProofRecord) -> str:
        return f"{proof.algorithm}: {proof.chunk_count} chunks, {proof.chunk_size}B each, root: {short_hash(proof.root)}"


class MerkleProofStrategy(ProofStrategy):
    name = "merkle"

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size

    def generate(self, data: bytes) -> ProofRecord:
        chunk_count = (len(data) + self.chunk_size - 1) // self.chunk_size
        proof = ProofRecord(
            root=merkle_root(data, self.chunk_size),
            chunk_count=chunk_count,
            chunk_size=self.chunk_size,
            algorithm=MERKLE_ALGORITHM,
            timestamp=now_ms(),
        )
        logger.debug("Generated integrity proof", proof=self.describe(proof))
        return proof


class DigestProofStrategy(ProofStrategy):
    """Single SHA-256 over the whole payload, as written by the legacy backend."""

    name = "digest"

    def generate(self, data: bytes) -> ProofRecord:
        return ProofRecord(
            root=hashlib.sha256(data).hexdigest(),
            chunk_count=1,
            chunk_size=len(data),
            algorithm=DIGEST_ALGORITHM,
            timestamp=now_ms(),
        )


def create_proof_strategy(name: Optional[str] = None, chunk_size: Optional[int] = None) -> ProofStrategy:
    """Build the configured proof strategy."""
    from truthchain import config

    name = (name or config.PROOF_STRATEGY).lower()
    if name == MerkleProofStrategy.name:
        return MerkleProofStrategy(chunk_size or config.PROOF_CHUNK_SIZE)
    if name == DigestProofStrategy.name:
        return DigestProofStrategy()
    raise ValueError(f"Unsupported proof strategy: {name}")
