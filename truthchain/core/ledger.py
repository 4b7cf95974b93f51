"""
Ledger client: the only gateway to the attestation ledger.

Writes go straight to the backend. Reads poll, because a freshly committed
registration is not immediately visible to every read path: each attempt tries
the keyed hash table first and falls back to scanning recent creation events,
and the attempts are bounded by an injected LookupRetryPolicy.
"""

import hashlib
import itertools
import threading
import time
import structlog
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from truthchain.core.errors import AlreadyExistsError, LedgerUnavailableError, MediaValidationError
from truthchain.core.utils import now_ms, short_hash
from truthchain.models.attestation import Attestation, AttestationEvent, MediaType, RegistrationReceipt
from truthchain.services.hashing import HASH_BYTE_LENGTH, bytes_to_hash, hash_to_bytes, validate_hash

logger = structlog.get_logger()

MAX_SOURCE_LENGTH = 100


class LookupUnsupportedError(Exception):
    """The backend cannot resolve a hash through its keyed table."""
    pass


class LookupRetryPolicy:
    """Bounded polling schedule for eventually consistent reads."""

    def __init__(
        self,
        retries: int = 3,
        delay: float = 2.0,
        backoff_factor: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self.retries = retries
        self.delay = delay
        self.backoff_factor = backoff_factor
        self.sleep = sleep

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def delay_for(self, retry: int) -> float:
        """Seconds to wait before the given retry (0-based)."""
        if not self.backoff_factor:
            return self.delay
        return self.delay * (self.backoff_factor ** retry)


class LedgerBackend(ABC):
    """Transport to a concrete ledger."""

    name = "abstract"

    @abstractmethod
    def submit_registration(
        self,
        hash_bytes: bytes,
        blob_id: str,
        source: str,
        media_type: str,
        is_ai_generated: bool,
        metadata: str,
    ) -> RegistrationReceipt:
        """Write one attestation; raises AlreadyExistsError or LedgerUnavailableError."""
        pass

    @abstractmethod
    def lookup_address(self, media_hash: str) -> Optional[str]:
        """Keyed hash -> attestation address lookup; may raise LookupUnsupportedError."""
        pass

    @abstractmethod
    def query_recent_events(self, limit: int) -> List[AttestationEvent]:
        """Creation events, newest first."""
        pass

    @abstractmethod
    def get_record(self, attestation_id: str) -> Optional[Attestation]:
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"backend": self.name, "available": True, "error": None}


class LedgerClient:
    """Registration and lookup against a LedgerBackend."""

    def __init__(
        self,
        backend: LedgerBackend,
        retry_policy: Optional[LookupRetryPolicy] = None,
        event_scan_limit: int = 500,
    ):
        self.backend = backend
        self.retry_policy = retry_policy or LookupRetryPolicy()
        self.event_scan_limit = event_scan_limit

    def register(
        self,
        media_hash: str,
        blob_id: str,
        source: str,
        media_type: str,
        is_ai_generated: bool = False,
        metadata: str = "{}",
    ) -> RegistrationReceipt:
        hash_bytes = hash_to_bytes(media_hash)
        if len(source) > MAX_SOURCE_LENGTH:
            raise MediaValidationError(f"Source must be at most {MAX_SOURCE_LENGTH} characters")
        if media_type not in {m.value for m in MediaType}:
            raise MediaValidationError(f"Unknown media type: {media_type}")

        logger.info("Submitting attestation to ledger",
                    backend=self.backend.name, hash=short_hash(media_hash), blob_id=blob_id)

        receipt = self.backend.submit_registration(
            hash_bytes, blob_id, source, media_type, is_ai_generated, metadata
        )

        logger.info("Ledger transaction executed",
                    tx_digest=receipt.tx_digest,
                    attestation_id=receipt.attestation_id,
                    creator=receipt.creator)
        return receipt

    def lookup(self, media_hash: str) -> Optional[Attestation]:
        """
        Resolve a content hash to its attestation, or None if never registered.

        Raises LedgerUnavailableError only when every attempt failed at the
        transport level; a clean miss on any attempt means "not found".
        """
        media_hash = validate_hash(media_hash)
        policy = self.retry_policy
        transport_failures = 0
        last_error = None

        for attempt in range(policy.attempts):
            if attempt > 0:
                delay = policy.delay_for(attempt - 1)
                logger.info("Attestation not found yet, retrying",
                            hash=short_hash(media_hash),
                            attempt=attempt + 1,
                            retries_left=policy.attempts - attempt - 1,
                            delay_seconds=delay)
                policy.sleep(delay)

            try:
                record = self._lookup_once(media_hash)
            except LedgerUnavailableError as e:
                transport_failures += 1
                last_error = e
                logger.warning("Ledger lookup attempt failed",
                               hash=short_hash(media_hash), attempt=attempt + 1, error=e.message)
                continue

            if record is not None:
                logger.info("Attestation found",
                            hash=short_hash(media_hash),
                            attestation_id=record.attestation_id,
                            attempts=attempt + 1)
                return record

        if transport_failures == policy.attempts:
            raise LedgerUnavailableError(
                f"Ledger lookup failed after {policy.attempts} attempts: {last_error.message}",
                stage="ledger_lookup",
            )

        logger.info("No attestation found for hash", hash=short_hash(media_hash), attempts=policy.attempts)
        return None

    def _lookup_once(self, media_hash: str) -> Optional[Attestation]:
        address = None
        try:
            address = self.backend.lookup_address(media_hash)
        except LookupUnsupportedError:
            logger.debug("Direct lookup unsupported, scanning events", backend=self.backend.name)
        except LedgerUnavailableError as e:
            logger.warning("Direct lookup failed, scanning events", error=e.message)

        if address is None:
            address = self._scan_events(media_hash)
        if address is None:
            return None

        record = self.backend.get_record(address)
        if record is None:
            logger.warning("Attestation address did not resolve to a record", attestation_id=address)
            return None

        if record.media_hash.lower() != media_hash:
            logger.error("Hash mismatch in resolved attestation",
                         expected=short_hash(media_hash),
                         actual=short_hash(record.media_hash),
                         attestation_id=address)
            return None

        return record

    def _scan_events(self, media_hash: str) -> Optional[str]:
        events = self.backend.query_recent_events(self.event_scan_limit)
        logger.debug("Scanning creation events", count=len(events))
        for event in events:
            if event.media_hash.lower() == media_hash:
                return event.attestation_id
        return None

    def recent_events(self, limit: int = 500) -> List[AttestationEvent]:
        return self.backend.query_recent_events(limit)

    def get_record(self, attestation_id: str) -> Optional[Attestation]:
        return self.backend.get_record(attestation_id)

    def health_check(self) -> Dict[str, Any]:
        try:
            return self.backend.health_check()
        except Exception as e:
            return {"backend": self.backend.name, "available": False, "error": str(e)}


class InMemoryLedgerBackend(LedgerBackend):
    """
    Process-local ledger with the same uniqueness rules as the on-chain
    registry.

    visibility_lag delays new records: each one stays invisible to hash
    lookups and event scans for that many read calls after its write.
    Setting unavailable makes every call fail like an unreachable node.
    """

    name = "memory"

    def __init__(
        self,
        creator: str = "0x" + "0" * 62 + "01",
        visibility_lag: int = 0,
        direct_lookup: bool = True,
        clock: Callable[[], int] = now_ms,
    ):
        self.creator = creator
        self.visibility_lag = visibility_lag
        self.direct_lookup = direct_lookup
        self.clock = clock
        self.unavailable = False

        self._records: Dict[str, Attestation] = {}
        self._hash_to_id: Dict[str, str] = {}
        self._events: List[AttestationEvent] = []
        self._pending: Dict[str, int] = {}
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def _check_available(self):
        if self.unavailable:
            raise LedgerUnavailableError("In-memory ledger marked unavailable", stage="ledger")

    def _tick(self):
        for address in list(self._pending):
            self._pending[address] -= 1
            if self._pending[address] < 0:
                del self._pending[address]

    def _visible(self, address: str) -> bool:
        return address not in self._pending

    def submit_registration(self, hash_bytes, blob_id, source, media_type, is_ai_generated, metadata):
        self._check_available()
        if len(hash_bytes) != HASH_BYTE_LENGTH:
            raise MediaValidationError(f"Hash must be {HASH_BYTE_LENGTH} bytes, got {len(hash_bytes)}")

        media_hash = bytes_to_hash(hash_bytes)
        with self._lock:
            if media_hash in self._hash_to_id:
                raise AlreadyExistsError(media_hash, details={"attestation_id": self._hash_to_id[media_hash]})

            sequence = next(self._sequence)
            address = "0x" + hashlib.sha256(f"attestation:{media_hash}:{sequence}".encode()).hexdigest()
            tx_digest = hashlib.sha256(f"tx:{sequence}:{media_hash}".encode()).hexdigest()
            created_at = self.clock()

            self._records[address] = Attestation(
                media_hash=media_hash,
                blob_id=blob_id,
                created_at=created_at,
                creator=self.creator,
                source=source,
                media_type=media_type,
                is_ai_generated=is_ai_generated,
                metadata=metadata,
                verification_count=0,
                attestation_id=address,
            )
            self._hash_to_id[media_hash] = address
            self._events.append(AttestationEvent(
                attestation_id=address, media_hash=media_hash, creator=self.creator, timestamp_ms=created_at
            ))
            if self.visibility_lag > 0:
                self._pending[address] = self.visibility_lag

        return RegistrationReceipt(tx_digest=tx_digest, attestation_id=address, creator=self.creator)

    def lookup_address(self, media_hash: str) -> Optional[str]:
        self._check_available()
        if not self.direct_lookup:
            raise LookupUnsupportedError("Direct hash lookup disabled")
        with self._lock:
            self._tick()
            address = self._hash_to_id.get(media_hash)
            if address is None or not self._visible(address):
                return None
            return address

    def query_recent_events(self, limit: int) -> List[AttestationEvent]:
        self._check_available()
        with self._lock:
            self._tick()
            visible = [e for e in self._events if self._visible(e.attestation_id)]
        return list(reversed(visible))[:limit]

    def get_record(self, attestation_id: str) -> Optional[Attestation]:
        self._check_available()
        with self._lock:
            record = self._records.get(attestation_id)
            return record.model_copy() if record else None

    def health_check(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "available": not self.unavailable,
            "error": "marked unavailable" if self.unavailable else None,
            "attestations": len(self._records),
        }

    def __len__(self) -> int:
        return len(self._records)


def create_ledger_client(backend: Optional[str] = None) -> LedgerClient:
    """Build the configured ledger client."""
    from truthchain import config

    backend = (backend or config.LEDGER_BACKEND).lower()
    if backend == "sui":
        from truthchain.core.sui import SuiLedgerBackend
        ledger_backend = SuiLedgerBackend.from_config()
    elif backend == "memory":
        ledger_backend = InMemoryLedgerBackend()
    else:
        raise ValueError(f"Unsupported ledger backend: {backend}")

    policy = LookupRetryPolicy(
        retries=config.LEDGER_LOOKUP_RETRIES,
        delay=config.LEDGER_LOOKUP_DELAY_SECONDS,
        backoff_factor=config.LEDGER_LOOKUP_BACKOFF_FACTOR,
    )
    return LedgerClient(ledger_backend, policy, event_scan_limit=config.LEDGER_EVENT_SCAN_LIMIT)
