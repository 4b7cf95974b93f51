"""
Sui JSON-RPC ledger backend.

Transactions are built server-side with unsafe_moveCall, signed locally with
the service's Ed25519 key (intent-prefixed, BLAKE2b-256 digest) and executed
with sui_executeTransactionBlock. Reads use the registry's hash_to_id table
and AttestationCreated events.
"""

import base64
import hashlib
import itertools
import structlog
from typing import Any, Dict, List, Optional

import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from truthchain.core.errors import AlreadyExistsError, LedgerUnavailableError
from truthchain.core.ledger import LedgerBackend, LookupUnsupportedError
from truthchain.models.attestation import Attestation, AttestationEvent, RegistrationReceipt
from truthchain.services.hashing import bytes_to_hash

logger = structlog.get_logger()

MODULE = "media_attestation"
REGISTER_FUNCTION = "register_media"
CLOCK_OBJECT_ID = "0x6"
ED25519_FLAG = 0x00
TRANSACTION_INTENT = bytes([0, 0, 0])
EVENT_PAGE_SIZE = 50


class SuiRpcError(Exception):
    """JSON-RPC level error returned by the fullnode."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def _decode_text(value: Any) -> str:
    """Move strings come back as str, raw vector<u8> fields as int lists."""
    if value is None:
        return ""
    if isinstance(value, list):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _decode_hash(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return bytes_to_hash(value)
    if isinstance(value, str):
        value = value.lower()
        return value[2:] if value.startswith("0x") else value
    return None


def _is_move_abort(message: str) -> bool:
    return "MoveAbort" in message


class SuiSigner:
    """Ed25519 keypair in Sui's address and signature formats."""

    def __init__(self, private_key: ed25519.Ed25519PrivateKey):
        self._private_key = private_key
        self.public_key_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.address = "0x" + _blake2b_256(bytes([ED25519_FLAG]) + self.public_key_bytes).hex()

    @classmethod
    def from_secret(cls, secret: str) -> "SuiSigner":
        """
        Parse a hex seed (optionally 0x-prefixed) or a base64 keystore entry
        (flag byte + 32-byte seed, as stored in sui.keystore).
        """
        secret = secret.strip()
        if secret.startswith("suiprivkey"):
            raise ValueError("Bech32 suiprivkey keys are not supported; export the key as hex or base64")

        hex_value = secret[2:] if secret.startswith("0x") else secret
        try:
            raw = bytes.fromhex(hex_value)
        except ValueError:
            try:
                raw = base64.b64decode(secret, validate=True)
            except ValueError as e:
                raise ValueError(f"Private key is neither hex nor base64: {e}")

        if len(raw) == 33:
            if raw[0] != ED25519_FLAG:
                raise ValueError(f"Unsupported key scheme flag: {raw[0]}")
            raw = raw[1:]
        if len(raw) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(raw)}")

        return cls(ed25519.Ed25519PrivateKey.from_private_bytes(raw))

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Serialized signature: flag || signature || public key, base64."""
        digest = _blake2b_256(TRANSACTION_INTENT + tx_bytes)
        signature = self._private_key.sign(digest)
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self.public_key_bytes).decode()


class SuiRpcClient:
    """Minimal JSON-RPC client over a retrying requests session."""

    def __init__(self, url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or self._create_session()
        self._ids = itertools.count(1)

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        # executing an already-executed signed transaction returns the same digest
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=["POST"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            logger.error("Sui RPC request failed", method=method, error=str(e))
            raise LedgerUnavailableError(f"Sui RPC unreachable: {e}", stage="ledger_rpc")
        except ValueError as e:
            raise LedgerUnavailableError(f"Sui RPC returned invalid JSON: {e}", stage="ledger_rpc")

        if body.get("error"):
            error = body["error"]
            raise SuiRpcError(error.get("code"), error.get("message", "unknown error"), error.get("data"))
        return body.get("result")


class SuiLedgerBackend(LedgerBackend):
    """Attestation registry deployed as the media_attestation Move module."""

    name = "sui"

    def __init__(
        self,
        rpc: SuiRpcClient,
        package_id: str,
        registry_id: str,
        signer: Optional[SuiSigner] = None,
        gas_budget: int = 50_000_000,
    ):
        self.rpc = rpc
        self.package_id = package_id
        self.registry_id = registry_id
        self.signer = signer
        self.gas_budget = gas_budget
        self._table_id = None

    @classmethod
    def from_config(cls) -> "SuiLedgerBackend":
        from truthchain import config

        signer = None
        if not config.SUI_PRIVATE_KEY:
            logger.warning("SUI_PRIVATE_KEY not set - cannot create blockchain transactions")
        else:
            try:
                signer = SuiSigner.from_secret(config.SUI_PRIVATE_KEY)
                logger.info("Sui signer loaded", address=signer.address)
            except ValueError as e:
                logger.error("Error creating signer from private key", error=str(e))

        if not config.PACKAGE_ID or not config.REGISTRY_OBJECT_ID:
            logger.warning("Sui package or registry object id not configured")

        return cls(
            rpc=SuiRpcClient(config.SUI_RPC_URL, timeout=config.HTTP_TIMEOUT),
            package_id=config.PACKAGE_ID,
            registry_id=config.REGISTRY_OBJECT_ID,
            signer=signer,
            gas_budget=config.SUI_GAS_BUDGET,
        )

    @property
    def event_type(self) -> str:
        return f"{self.package_id}::{MODULE}::AttestationCreated"

    def _require_ids(self, stage: str):
        if not self.package_id:
            raise LedgerUnavailableError("PACKAGE_ID or TRUTHCHAIN_PACKAGE_ID is not configured", stage=stage)
        if not self.registry_id:
            raise LedgerUnavailableError("REGISTRY_OBJECT_ID or TRUTHCHAIN_REGISTRY_OBJECT_ID is not configured",
                                         stage=stage)

    def submit_registration(self, hash_bytes, blob_id, source, media_type, is_ai_generated, metadata):
        if self.signer is None:
            raise LedgerUnavailableError("SUI_PRIVATE_KEY not configured - cannot create blockchain transaction",
                                         stage="ledger_writing")
        self._require_ids("ledger_writing")

        media_hash = bytes_to_hash(hash_bytes)
        arguments = [
            list(hash_bytes),
            list(blob_id.encode("utf-8")),
            list(source.encode("utf-8")),
            list(media_type.encode("utf-8")),
            is_ai_generated,
            list(metadata.encode("utf-8")),
            self.registry_id,
            CLOCK_OBJECT_ID,
        ]

        try:
            built = self.rpc.call("unsafe_moveCall", [
                self.signer.address,
                self.package_id,
                MODULE,
                REGISTER_FUNCTION,
                [],
                arguments,
                None,
                str(self.gas_budget),
            ])
            tx_bytes = built["txBytes"]
            signature = self.signer.sign_transaction(base64.b64decode(tx_bytes))
            result = self.rpc.call("sui_executeTransactionBlock", [
                tx_bytes,
                [signature],
                {"showEffects": True, "showEvents": True},
                "WaitForLocalExecution",
            ])
        except SuiRpcError as e:
            if _is_move_abort(e.message):
                raise AlreadyExistsError(media_hash, details={"ledger_error": e.message})
            raise LedgerUnavailableError(f"Sui RPC error: {e.message}", stage="ledger_writing")

        status = (result.get("effects") or {}).get("status") or {}
        if status.get("status") != "success":
            error = status.get("error", "unknown failure")
            if _is_move_abort(error):
                raise AlreadyExistsError(media_hash, details={"ledger_error": error, "tx_digest": result.get("digest")})
            raise LedgerUnavailableError(f"Transaction failed: {error}", stage="ledger_writing",
                                         details={"tx_digest": result.get("digest")})

        attestation_id = None
        creator = None
        for event in result.get("events") or []:
            if "AttestationCreated" in event.get("type", ""):
                parsed = event.get("parsedJson") or {}
                attestation_id = parsed.get("attestation_id")
                creator = parsed.get("creator")
                break

        return RegistrationReceipt(tx_digest=result["digest"], attestation_id=attestation_id, creator=creator)

    def _hash_table_id(self) -> str:
        if self._table_id:
            return self._table_id

        registry = self._get_object(self.registry_id)
        try:
            self._table_id = registry["fields"]["hash_to_id"]["fields"]["id"]["id"]
        except (KeyError, TypeError):
            raise LookupUnsupportedError("Registry object has no hash_to_id table")
        return self._table_id

    def lookup_address(self, media_hash: str) -> Optional[str]:
        self._require_ids("ledger_lookup")
        table_id = self._hash_table_id()

        try:
            result = self.rpc.call("suix_getDynamicFieldObject", [
                table_id,
                {"type": "vector<u8>", "value": list(bytes.fromhex(media_hash))},
            ])
        except SuiRpcError as e:
            logger.debug("Dynamic field lookup failed", error=e.message)
            return None

        data = (result or {}).get("data")
        if not data:
            return None
        fields = (data.get("content") or {}).get("fields") or {}
        return fields.get("value")

    def query_recent_events(self, limit: int) -> List[AttestationEvent]:
        self._require_ids("ledger_lookup")

        events = []
        cursor = None
        while len(events) < limit:
            try:
                page = self.rpc.call("suix_queryEvents", [
                    {"MoveEventType": self.event_type},
                    cursor,
                    min(EVENT_PAGE_SIZE, limit - len(events)),
                    True,
                ])
            except SuiRpcError as e:
                raise LedgerUnavailableError(f"Event query failed: {e.message}", stage="ledger_lookup")

            for event in page.get("data") or []:
                parsed = event.get("parsedJson") or {}
                media_hash = _decode_hash(parsed.get("media_hash"))
                if not media_hash or not parsed.get("attestation_id"):
                    continue
                events.append(AttestationEvent(
                    attestation_id=parsed["attestation_id"],
                    media_hash=media_hash,
                    creator=parsed.get("creator", ""),
                    timestamp_ms=int(event.get("timestampMs") or parsed.get("timestamp") or 0),
                ))

            if not page.get("hasNextPage") or not page.get("nextCursor"):
                break
            cursor = page["nextCursor"]

        return events[:limit]

    def _get_object(self, object_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.rpc.call("sui_getObject", [object_id, {"showContent": True, "showType": True}])
        except SuiRpcError as e:
            logger.warning("Object read failed", object_id=object_id, error=e.message)
            return None

        content = ((result or {}).get("data") or {}).get("content") or {}
        if content.get("dataType") != "moveObject":
            return None
        return content

    def get_record(self, attestation_id: str) -> Optional[Attestation]:
        content = self._get_object(attestation_id)
        if content is None:
            return None

        fields = content.get("fields") or {}
        return Attestation(
            media_hash=_decode_hash(fields.get("media_hash") or []) or "",
            blob_id=_decode_text(fields.get("walrus_blob_id")),
            created_at=int(fields.get("created_at") or 0),
            creator=fields.get("creator") or "",
            source=_decode_text(fields.get("source")),
            media_type=_decode_text(fields.get("media_type")),
            is_ai_generated=bool(fields.get("is_ai_generated", False)),
            metadata=_decode_text(fields.get("metadata")) or "{}",
            verification_count=int(fields.get("verification_count") or 0),
            attestation_id=attestation_id,
        )

    def health_check(self) -> Dict[str, Any]:
        health = {
            "backend": self.name,
            "available": False,
            "error": None,
            "signer": self.signer.address if self.signer else None,
        }
        try:
            health["chain_id"] = self.rpc.call("sui_getChainIdentifier", [])
            health["available"] = True
        except (SuiRpcError, LedgerUnavailableError) as e:
            health["error"] = str(e)
        return health
