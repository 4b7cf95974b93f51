"""
Request and response models for the HTTP API.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from truthchain.core.errors import MediaValidationError
from truthchain.models.attestation import CamelModel, ImageMetadata, IndexEntry, IndexStats, MediaType, ProofRecord
from truthchain.services.hashing import validate_hash


def _canonical_hash(value: str) -> str:
    try:
        return validate_hash(value)
    except MediaValidationError as e:
        raise ValueError(e.message)


class RegisterRequest(CamelModel):
    """Registration of a hash computed client-side."""
    hash: str = Field(..., description="SHA-256 of the normalized media, 64 hex characters")
    source: str = Field(..., min_length=1, max_length=100, description="Where the media was published")
    media_type: MediaType = Field(..., description="photo, video, document or audio")
    is_ai_generated: bool = Field(False, description="Creator-declared AI generation flag")
    metadata: str = Field("{}", description="Opaque metadata string stored on the ledger")
    creator: Optional[str] = Field(None, description="Creator address for the reputation check")
    image_metadata: Optional[ImageMetadata] = Field(None, description="Image properties for similarity detection")

    @field_validator("hash")
    @classmethod
    def canonical_hash(cls, value: str) -> str:
        return _canonical_hash(value)


class VerifyRequest(CamelModel):
    hash: str = Field(..., description="SHA-256 of the normalized media, 64 hex characters")

    @field_validator("hash")
    @classmethod
    def canonical_hash(cls, value: str) -> str:
        return _canonical_hash(value)


class RegisterResponse(CamelModel):
    """Outcome of a registration; success with ledger_error set is a partial success."""
    success: bool = True
    hash: str
    walrus_blob_id: str = Field(..., description="Blob holding the metadata and integrity proof")
    walrus_url: Optional[str] = None
    proof: ProofRecord
    tx_digest: Optional[str] = None
    attestation_id: Optional[str] = None
    creator: Optional[str] = None
    ledger_error: Optional[str] = Field(None, description="Set when the blob was stored but the ledger write failed")
    stage: str = Field(..., description="Last stage reached")
    security_warnings: List[str] = Field(default_factory=list)
    is_ai_generated: bool = False
    normalized: Optional[bool] = None
    fallback_reason: Optional[str] = None
    timestamp: int


class VerifyResponse(CamelModel):
    """Verification outcome: unknown, verified or tampered."""
    status: str
    hash: str
    message: Optional[str] = None
    integrity: Optional[str] = Field(None, description="valid, mismatch or unchecked")
    timestamp: Optional[int] = None
    source: Optional[str] = None
    creator: Optional[str] = None
    verification_count: Optional[int] = None
    media_type: Optional[str] = None
    is_ai_generated: Optional[bool] = None
    walrus_blob_id: Optional[str] = None
    attestation_id: Optional[str] = None
    metadata: Optional[str] = None


class SearchResponse(CamelModel):
    success: bool = True
    count: int
    results: List[IndexEntry]


class StatsResponse(CamelModel):
    success: bool = True
    stats: IndexStats
    index_size: Dict[str, int]


class CreatorResponse(CamelModel):
    success: bool = True
    creator: str
    count: int
    attestations: List[IndexEntry]
    reputation: Dict[str, Any]


class ReputationResponse(CamelModel):
    success: bool = True
    reputation: Dict[str, Any]


class ErrorResponse(CamelModel):
    """Error response model."""
    success: bool = False
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    stage: Optional[str] = Field(None, description="Failing pipeline stage for upstream errors")
    reason: Optional[str] = None
    warnings: Optional[List[str]] = None
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class HealthResponse(CamelModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")

