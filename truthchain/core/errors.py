"""
Error taxonomy for the attestation pipeline.

NotFound and IntegrityMismatch are not exceptions: a missing hash is a normal
"unknown" verification result and a proof mismatch is reported as "tampered".
"""

from typing import List, Optional


class AttestationError(Exception):
    """Base class for all pipeline errors."""

    error = "attestation_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MediaValidationError(AttestationError):
    """Malformed request input, rejected before any side effect."""

    error = "validation_error"
    status_code = 400


class AlreadyExistsError(AttestationError):
    """The ledger already holds an attestation for this content hash."""

    error = "already_exists"
    status_code = 409

    def __init__(self, content_hash: str, details: Optional[dict] = None):
        super().__init__(f"Attestation already exists for hash {content_hash}", details)
        self.content_hash = content_hash


class UpstreamUnavailableError(AttestationError):
    """An external collaborator (blob store or ledger) failed."""

    error = "upstream_unavailable"
    status_code = 503

    def __init__(self, message: str, stage: str, details: Optional[dict] = None):
        super().__init__(message, details)
        self.stage = stage


class StorageError(UpstreamUnavailableError):
    """Blob storage failure."""
    pass


class LedgerUnavailableError(UpstreamUnavailableError):
    """Ledger unreachable, or no signing credential / object ids configured."""
    pass


class GuardBlockedError(AttestationError):
    """A similarity or reputation heuristic vetoed the registration."""

    error = "registration_blocked"

    def __init__(self, guard: str, reason: str, warnings: List[str], details: Optional[dict] = None):
        super().__init__(reason, details)
        self.guard = guard
        self.reason = reason
        self.warnings = warnings
        # reputation vetoes are a permission problem, similarity vetoes a bad request
        self.status_code = 403 if guard == "reputation" else 400
