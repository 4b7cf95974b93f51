"""
Registration and verification pipeline.

register: validate -> guards -> proof -> blob upload -> ledger write -> index.
verify:   validate -> ledger lookup -> blob fetch -> proof check -> count update.

A ledger failure after the blob upload is reported as a partial success; the
blob is not rolled back. Guards are advisory and never block on their own
internal errors.
"""

import json
import structlog
from typing import Optional, Tuple

from truthchain.core.errors import (
    AlreadyExistsError,
    AttestationError,
    GuardBlockedError,
    LedgerUnavailableError,
    MediaValidationError,
    StorageError,
)
from truthchain.core.ledger import LedgerClient
from truthchain.core.storage import BlobStore
from truthchain.core.utils import detect_media_type, now_ms, short_hash
from truthchain.models.api import RegisterRequest, RegisterResponse, VerifyResponse
from truthchain.models.attestation import (
    Attestation,
    GuardDecision,
    ImageMetadata,
    IndexEntry,
    IndexStats,
    MediaType,
    ProofRecord,
    Recommendation,
    RegistrationStage,
    SearchFilters,
)
from truthchain.services.hashing import content_hash, validate_hash
from truthchain.services.indexing import AttestationIndex
from truthchain.services.normalizer import ContentNormalizer
from truthchain.services.proofs import ProofStrategy, verify_proof
from truthchain.services.reputation import ReputationTracker
from truthchain.services.similarity import SimilarityGuard

logger = structlog.get_logger()

# what the stored proof was computed over
SUBJECT_HASH = "hash"
SUBJECT_CONTENT = "content"


class AttestationService:
    """Composes normalizer, proofs, blob store, ledger and index."""

    def __init__(
        self,
        normalizer: ContentNormalizer,
        proof_strategy: ProofStrategy,
        blob_store: BlobStore,
        ledger: LedgerClient,
        index: AttestationIndex,
        similarity_guard: Optional[SimilarityGuard] = None,
        reputation: Optional[ReputationTracker] = None,
    ):
        self.normalizer = normalizer
        self.proof_strategy = proof_strategy
        self.blob_store = blob_store
        self.ledger = ledger
        self.index = index
        self.similarity_guard = similarity_guard
        self.reputation = reputation

    # Registration

    def register(self, request: RegisterRequest) -> RegisterResponse:
        """Register a hash computed by the client; the proof covers the hash string."""
        image_metadata = request.image_metadata or _image_metadata_from(request.metadata)
        return self._register(request, request.hash, None, SUBJECT_HASH, image_metadata)

    def register_media(
        self,
        data: bytes,
        filename: Optional[str],
        content_type: Optional[str],
        source: str,
        media_type: Optional[str] = None,
        is_ai_generated: bool = False,
        metadata: str = "{}",
        creator: Optional[str] = None,
    ) -> RegisterResponse:
        """Normalize and hash uploaded bytes server-side, then register them."""
        if not data:
            raise MediaValidationError("Uploaded file is empty")

        resolved_type = _resolve_media_type(media_type, filename, content_type)
        normalized = self.normalizer.normalize(data, resolved_type)
        media_hash = content_hash(normalized.data)

        logger.info("Media normalized for registration",
                    filename=filename,
                    hash=short_hash(media_hash),
                    normalized=normalized.normalized,
                    fallback_reason=normalized.fallback_reason)

        image_metadata = None
        if normalized.width or normalized.height:
            image_metadata = ImageMetadata(
                width=normalized.width,
                height=normalized.height,
                format=normalized.source_format,
                size=normalized.size,
            )

        try:
            request = RegisterRequest(
                hash=media_hash,
                source=source,
                media_type=resolved_type,
                is_ai_generated=is_ai_generated,
                metadata=metadata,
                creator=creator,
                image_metadata=image_metadata,
            )
        except ValueError as e:
            raise MediaValidationError(f"Invalid registration fields: {e}")

        response = self._register(request, media_hash, normalized.data, SUBJECT_CONTENT, image_metadata)
        response.normalized = normalized.normalized
        response.fallback_reason = normalized.fallback_reason
        return response

    def _register(
        self,
        request: RegisterRequest,
        media_hash: str,
        proof_subject: Optional[bytes],
        subject_kind: str,
        image_metadata: Optional[ImageMetadata],
    ) -> RegisterResponse:
        stage = RegistrationStage.VALIDATING
        media_hash = validate_hash(media_hash)
        if proof_subject is None:
            proof_subject = media_hash.encode("utf-8")

        log = logger.bind(hash=short_hash(media_hash), source=request.source)
        log.info("Registration started", media_type=request.media_type.value, creator=request.creator)

        stage = RegistrationStage.GUARD_CHECKING
        try:
            warnings = self._run_guards(media_hash, request, image_metadata)
        except GuardBlockedError as e:
            e.details["stage"] = stage.value
            raise

        stage = RegistrationStage.PROOF_GENERATING
        proof = self.proof_strategy.generate(proof_subject)

        stage = RegistrationStage.BLOB_UPLOADING
        timestamp = now_ms()
        payload = {
            "hash": media_hash,
            "metadata": {
                "source": request.source,
                "mediaType": request.media_type.value,
                "timestamp": timestamp,
                "proofSubject": subject_kind,
                "sealProof": proof.model_dump(by_alias=True),
            },
        }
        try:
            blob_id = self.blob_store.put(json.dumps(payload, sort_keys=True).encode("utf-8"))
        except StorageError as e:
            log.error("Metadata blob upload failed", error=e.message)
            e.details["stage"] = stage.value
            raise
        log.info("Metadata blob stored", blob_id=blob_id)

        response = RegisterResponse(
            hash=media_hash,
            walrus_blob_id=blob_id,
            walrus_url=self._blob_url(blob_id),
            proof=proof,
            stage=stage.value,
            security_warnings=warnings,
            is_ai_generated=request.is_ai_generated,
            creator=request.creator,
            timestamp=timestamp,
        )

        stage = RegistrationStage.LEDGER_WRITING
        try:
            receipt = self.ledger.register(
                media_hash,
                blob_id,
                request.source,
                request.media_type.value,
                request.is_ai_generated,
                request.metadata,
            )
        except AlreadyExistsError:
            log.warning("Hash already registered on ledger", blob_id=blob_id)
            raise
        except Exception as e:
            message = e.message if isinstance(e, AttestationError) else str(e)
            log.error("Ledger write failed after blob upload", blob_id=blob_id, error=message)
            response.ledger_error = message
            response.stage = stage.value
            return response

        response.tx_digest = receipt.tx_digest
        response.attestation_id = receipt.attestation_id
        creator = request.creator or receipt.creator
        response.creator = creator

        if creator and self.reputation is not None:
            self.reputation.record_registration(creator, verified=True)
        if image_metadata is not None and self.similarity_guard is not None and receipt.attestation_id:
            self.similarity_guard.remember(image_metadata, media_hash, receipt.attestation_id, creator or "", timestamp)

        stage = RegistrationStage.INDEXING
        if receipt.attestation_id:
            try:
                self.index.insert(IndexEntry(
                    attestation_id=receipt.attestation_id,
                    media_hash=media_hash,
                    creator=creator or "",
                    source=request.source,
                    timestamp=timestamp,
                    media_type=request.media_type.value,
                    is_ai_generated=request.is_ai_generated,
                    blob_id=blob_id,
                    verification_count=0,
                ))
            except Exception as e:
                log.error("Indexing failed (non-critical)", attestation_id=receipt.attestation_id, error=str(e))
        else:
            log.warning("Ledger returned no attestation id, skipping index", tx_digest=receipt.tx_digest)

        stage = RegistrationStage.DONE
        response.stage = stage.value
        log.info("Registration completed",
                 attestation_id=receipt.attestation_id,
                 tx_digest=receipt.tx_digest,
                 warnings=len(warnings))
        return response

    def _run_guards(self, media_hash: str, request: RegisterRequest,
                    image_metadata: Optional[ImageMetadata]) -> list:
        warnings = []

        if self.similarity_guard is not None and image_metadata and (image_metadata.width or image_metadata.height):
            decision = self._guard("similarity", self.similarity_guard.validate,
                                   media_hash, image_metadata, request.source)
            warnings.extend(decision.warnings)
            if not decision.allowed:
                raise GuardBlockedError("similarity", "Very similar image already registered",
                                        decision.warnings, details={"similarity": decision.score})

        if self.reputation is not None and request.creator:
            decision = self._guard("reputation", self.reputation.validate, request.creator)
            warnings.extend(decision.warnings)
            if not decision.allowed:
                raise GuardBlockedError("reputation", "Creator reputation too low",
                                        decision.warnings, details={"reputationScore": decision.score})

        return warnings

    def _guard(self, name: str, check, *args) -> GuardDecision:
        try:
            return check(*args)
        except Exception as e:
            logger.error("Guard failed, allowing registration", guard=name, error=str(e), exc_info=True)
            return GuardDecision(guard=name, recommendation=Recommendation.ALLOW)

    def _blob_url(self, blob_id: str) -> Optional[str]:
        blob_url = getattr(self.blob_store, "blob_url", None)
        return blob_url(blob_id) if blob_url else None

    # Verification

    def verify(self, media_hash: str) -> VerifyResponse:
        """Verify a client-computed hash; content-subject proofs cannot be rechecked here."""
        media_hash = validate_hash(media_hash)
        return self._verify(media_hash, media_hash.encode("utf-8"), None)

    def verify_media(self, data: bytes, filename: Optional[str] = None,
                     content_type: Optional[str] = None) -> VerifyResponse:
        if not data:
            raise MediaValidationError("Uploaded file is empty")

        media_type = detect_media_type(filename, content_type) or MediaType.PHOTO
        normalized = self.normalizer.normalize(data, media_type)
        media_hash = content_hash(normalized.data)
        return self._verify(media_hash, media_hash.encode("utf-8"), normalized.data)

    def _verify(self, media_hash: str, hash_subject: bytes, content: Optional[bytes]) -> VerifyResponse:
        log = logger.bind(hash=short_hash(media_hash))

        record = self.ledger.lookup(media_hash)
        if record is None:
            log.info("Verification found no attestation")
            return VerifyResponse(status="unknown", hash=media_hash,
                                  message="No attestation found for this media hash")

        integrity = self._check_integrity(record, media_hash, hash_subject, content)
        count = self._increment_count(record)

        status = "tampered" if integrity == "mismatch" else "verified"
        log.info("Verification completed",
                 attestation_id=record.attestation_id, status=status, integrity=integrity, verification_count=count)

        return VerifyResponse(
            status=status,
            hash=record.media_hash,
            integrity=integrity,
            message="Integrity proof does not match attested content" if status == "tampered" else None,
            timestamp=record.created_at,
            source=record.source,
            creator=record.creator,
            verification_count=count,
            media_type=record.media_type,
            is_ai_generated=record.is_ai_generated,
            walrus_blob_id=record.blob_id,
            attestation_id=record.attestation_id,
            metadata=record.metadata,
        )

    def _check_integrity(self, record: Attestation, media_hash: str,
                         hash_subject: bytes, content: Optional[bytes]) -> str:
        """'valid', 'mismatch' or 'unchecked'. Blob fetch errors propagate."""
        if not record.blob_id:
            return "unchecked"

        raw = self.blob_store.get(record.blob_id)
        try:
            payload = json.loads(raw)
            blob_hash, proof, subject = _parse_blob(payload)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Stored blob is not a valid attestation payload",
                           blob_id=record.blob_id, error=str(e))
            return "mismatch"

        if blob_hash is not None and blob_hash.lower() != media_hash:
            logger.warning("Blob hash does not match attested hash",
                           blob_id=record.blob_id, blob_hash=short_hash(blob_hash))
            return "mismatch"

        # encrypted proofs carry no root and cannot be rechecked here
        if proof is None or not proof.root:
            return "unchecked"

        if subject == SUBJECT_CONTENT:
            if content is None:
                return "unchecked"
            return "valid" if verify_proof(content, proof) else "mismatch"

        return "valid" if verify_proof(hash_subject, proof) else "mismatch"

    def _increment_count(self, record: Attestation) -> int:
        try:
            return self.index.increment_verification_count(
                record.attestation_id,
                floor=record.verification_count,
                seed_entry=record.to_index_entry(),
            )
        except Exception as e:
            logger.error("Verification count update failed (non-critical)",
                         attestation_id=record.attestation_id, error=str(e))
            return record.verification_count

    # Queries

    def search(self, filters: SearchFilters):
        return self.index.search(filters)

    def stats(self, limit: int = 10) -> Tuple[IndexStats, dict]:
        return self.index.stats(limit), self.index.size()

    def by_creator(self, creator: str):
        return self.index.by_creator(creator)

    def rebuild_index(self, limit: int = 500) -> int:
        try:
            return self.index.rebuild(self.ledger, limit)
        except LedgerUnavailableError as e:
            logger.error("Index replay failed", error=e.message)
            return 0


def _resolve_media_type(media_type: Optional[str], filename: Optional[str],
                        content_type: Optional[str]) -> MediaType:
    if media_type:
        try:
            return MediaType(media_type)
        except ValueError:
            raise MediaValidationError(f"Unknown media type: {media_type}")

    detected = detect_media_type(filename, content_type)
    if detected is None:
        raise MediaValidationError("Could not determine media type",
                                   details={"filename": filename, "content_type": content_type})
    return detected


def _image_metadata_from(metadata: str) -> Optional[ImageMetadata]:
    """Fall back to width/height carried in the opaque metadata string."""
    try:
        parsed = json.loads(metadata or "{}")
    except ValueError:
        return None
    if not isinstance(parsed, dict) or not (parsed.get("width") or parsed.get("height")):
        return None
    try:
        return ImageMetadata(
            width=parsed.get("width"),
            height=parsed.get("height"),
            format=parsed.get("format") or parsed.get("type"),
            size=parsed.get("size"),
        )
    except ValueError:
        return None


def _parse_blob(payload: dict) -> Tuple[Optional[str], Optional[ProofRecord], str]:
    metadata = payload.get("metadata") or {}
    proof_data = metadata.get("sealProof") or metadata.get("proof")
    proof = ProofRecord.model_validate(proof_data) if proof_data else None
    return payload.get("hash"), proof, metadata.get("proofSubject", SUBJECT_HASH)
