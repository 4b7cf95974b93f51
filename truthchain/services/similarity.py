"""
Coarse near-duplicate detection for registrations.

The signature is not a perceptual hash of pixels: it packs image dimensions,
size, format and a content-hash prefix into 64 bits so that re-encodings of
the same image land close together in Hamming space. It is advisory only.
"""

import hashlib
import threading
import structlog
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from truthchain.core.utils import short_hash
from truthchain.models.attestation import GuardDecision, ImageMetadata, Recommendation

logger = structlog.get_logger()

SIGNATURE_BITS = 64
BLOCK_THRESHOLD = 95
WARN_THRESHOLD = 85
SUSPICIOUS_SOURCES = ("unknown", "test", "fake")


def _gray(value: int, bits: int) -> int:
    """Clamp to the field width and Gray-code, so neighbouring values differ by one bit."""
    value = max(0, min(value, (1 << bits) - 1))
    return value ^ (value >> 1)


def compute_signature(metadata: ImageMetadata, content_hash: str) -> int:
    """
    64-bit signature: width (12) | height (12) | size in KiB (16) |
    format (8) | content hash prefix (16).
    """
    fmt = (metadata.format or "unknown").lower().encode()
    format_bits = hashlib.sha256(fmt).digest()[0]
    prefix_bits = int(content_hash[:4], 16) if content_hash else 0

    signature = _gray(metadata.width or 0, 12)
    signature = (signature << 12) | _gray(metadata.height or 0, 12)
    signature = (signature << 16) | _gray((metadata.size or 0) >> 10, 16)
    signature = (signature << 8) | format_bits
    signature = (signature << 16) | prefix_bits
    return signature


def similarity_scores(signature: int, others: Sequence[int]) -> np.ndarray:
    """Percent of matching bits (0-100) between signature and each of others."""
    if not others:
        return np.zeros(0, dtype=np.int64)

    stored = np.asarray(others, dtype=np.uint64)
    diff = np.bitwise_xor(stored, np.uint64(signature))
    distances = np.unpackbits(diff.view(np.uint8).reshape(-1, 8), axis=1).sum(axis=1)
    return np.rint((SIGNATURE_BITS - distances) * 100 / SIGNATURE_BITS).astype(np.int64)


def similarity_score(a: int, b: int) -> int:
    return int(similarity_scores(a, [b])[0])


def decide(similarity: Optional[int], block_threshold: int = BLOCK_THRESHOLD,
           warn_threshold: int = WARN_THRESHOLD) -> Recommendation:
    if similarity is None:
        return Recommendation.ALLOW
    if similarity >= block_threshold:
        return Recommendation.BLOCK
    if similarity >= warn_threshold:
        return Recommendation.WARN
    return Recommendation.ALLOW


@dataclass
class SimilarImage:
    media_hash: str
    attestation_id: str
    creator: str
    timestamp: int
    similarity: int


@dataclass
class _Remembered:
    signature: int
    media_hash: str
    attestation_id: str
    creator: str
    timestamp: int


class SimilarityGuard:
    """Compares new registrations against signatures of earlier ones."""

    def __init__(
        self,
        block_threshold: int = BLOCK_THRESHOLD,
        warn_threshold: int = WARN_THRESHOLD,
        suspicious_sources: Sequence[str] = SUSPICIOUS_SOURCES,
    ):
        if warn_threshold > block_threshold:
            raise ValueError("warn_threshold must not exceed block_threshold")
        self.block_threshold = block_threshold
        self.warn_threshold = warn_threshold
        self.suspicious_sources = tuple(s.lower() for s in suspicious_sources)
        self._known: List[_Remembered] = []
        self._lock = threading.Lock()

    def remember(self, metadata: ImageMetadata, media_hash: str, attestation_id: str,
                 creator: str = "", timestamp: int = 0) -> None:
        with self._lock:
            self._known.append(_Remembered(
                signature=compute_signature(metadata, media_hash),
                media_hash=media_hash,
                attestation_id=attestation_id,
                creator=creator,
                timestamp=timestamp,
            ))

    def find_similar(self, signature: int, threshold: Optional[int] = None) -> List[SimilarImage]:
        threshold = self.warn_threshold if threshold is None else threshold
        with self._lock:
            known = list(self._known)

        scores = similarity_scores(signature, [k.signature for k in known])
        matches = [
            SimilarImage(k.media_hash, k.attestation_id, k.creator, k.timestamp, int(score))
            for k, score in zip(known, scores)
            if score >= threshold
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    def validate(self, media_hash: str, metadata: ImageMetadata, source: str = "") -> GuardDecision:
        warnings = []
        # exact duplicates are rejected by the ledger, not here
        similar = [m for m in self.find_similar(compute_signature(metadata, media_hash))
                   if m.media_hash != media_hash]
        highest = similar[0].similarity if similar else None
        recommendation = decide(highest, self.block_threshold, self.warn_threshold)

        if recommendation == Recommendation.BLOCK:
            warnings.append(f"Very similar image already registered ({highest}% similarity)")
            warnings.append(f"Registered by: {short_hash(similar[0].creator, 10)}")
        elif recommendation == Recommendation.WARN:
            warnings.append(f"Similar image detected ({highest}% similarity)")
            warnings.append("Consider verifying this is the original version")

        if any(s in source.lower() for s in self.suspicious_sources):
            warnings.append(f'Source appears suspicious: "{source}"')
            if recommendation == Recommendation.ALLOW:
                recommendation = Recommendation.WARN

        if warnings:
            logger.info("Similarity guard raised warnings",
                        hash=short_hash(media_hash),
                        recommendation=recommendation.value,
                        highest_similarity=highest)

        return GuardDecision(guard="similarity", recommendation=recommendation, warnings=warnings,
                             score=float(highest) if highest is not None else None)

    def __len__(self) -> int:
        return len(self._known)
