"""
Pydantic models for attestation-related data structures.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediaType(str, Enum):
    """Enumeration of media types accepted by the ledger."""
    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"


class RegistrationStage(str, Enum):
    """Stages a single registration moves through, in order."""
    VALIDATING = "validating"
    GUARD_CHECKING = "guard_checking"
    PROOF_GENERATING = "proof_generating"
    BLOB_UPLOADING = "blob_uploading"
    LEDGER_WRITING = "ledger_writing"
    INDEXING = "indexing"
    DONE = "done"


class ProofRecord(CamelModel):
    """
    Whole-data integrity digest over chunked content.

    Serialized with the legacy field names (merkleRoot, chunks, chunkSize) so
    proofs stored by older clients still parse.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    root: Optional[str] = Field(None, alias="merkleRoot", description="Hex root digest")
    chunk_count: int = Field(0, alias="chunks", ge=0)
    chunk_size: int = Field(0, alias="chunkSize", ge=0)
    algorithm: str = Field("SHA-256-MERKLE")
    timestamp: int = Field(0, description="Creation time in ms since epoch")


class ImageMetadata(CamelModel):
    """Coarse image properties used by the similarity guard."""
    width: Optional[int] = Field(None, ge=0)
    height: Optional[int] = Field(None, ge=0)
    format: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)


class Attestation(CamelModel):
    """A ledger record binding a content hash to a creator and a blob."""
    media_hash: str = Field(..., description="64-char lowercase hex content hash")
    blob_id: str = Field("", description="Blob store reference")
    created_at: int = Field(0, description="Ledger timestamp in ms")
    creator: str = ""
    source: str = ""
    media_type: str = ""
    is_ai_generated: bool = False
    metadata: str = "{}"
    verification_count: int = Field(0, ge=0)
    attestation_id: str = Field(..., description="Ledger-assigned address")

    def to_index_entry(self) -> "IndexEntry":
        return IndexEntry(
            attestation_id=self.attestation_id,
            media_hash=self.media_hash,
            creator=self.creator,
            source=self.source,
            timestamp=self.created_at,
            media_type=self.media_type,
            is_ai_generated=self.is_ai_generated,
            blob_id=self.blob_id,
            verification_count=self.verification_count,
        )


class AttestationEvent(CamelModel):
    """Creation event emitted by the ledger on every successful registration."""
    attestation_id: str
    media_hash: str
    creator: str = ""
    timestamp_ms: int = 0


class RegistrationReceipt(CamelModel):
    """Result of a successful ledger write."""
    tx_digest: str
    attestation_id: Optional[str] = None
    creator: Optional[str] = None


class IndexEntry(CamelModel):
    """Denormalized projection of an attestation, owned by the index."""
    attestation_id: str
    media_hash: str
    creator: str = ""
    source: str = ""
    timestamp: int = 0
    media_type: str = ""
    is_ai_generated: bool = False
    blob_id: str = ""
    verification_count: int = 0


class SearchFilters(CamelModel):
    """Optional filters for index search; all given filters must match."""
    creator: Optional[str] = None
    source: Optional[str] = None
    date_from: Optional[int] = None
    date_to: Optional[int] = None
    media_type: Optional[MediaType] = None
    is_ai_generated: Optional[bool] = None


class CountEntry(BaseModel):
    name: str
    count: int


class IndexStats(CamelModel):
    """Aggregate statistics over the index."""
    total_attestations: int
    total_verifications: int
    top_creators: List[CountEntry]
    top_sources: List[CountEntry]
    attestations_by_type: dict
    recent_attestations: List[IndexEntry]


class Recommendation(str, Enum):
    """Outcome of an advisory guard."""
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


class GuardDecision(BaseModel):
    """Verdict of one guard, with the warnings that explain it."""
    guard: str
    recommendation: Recommendation = Recommendation.ALLOW
    warnings: List[str] = Field(default_factory=list)
    score: Optional[float] = None

    @property
    def allowed(self) -> bool:
        return self.recommendation != Recommendation.BLOCK
