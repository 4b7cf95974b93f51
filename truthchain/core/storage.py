import hashlib
import threading
import time
import structlog
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from truthchain.core.errors import StorageError
from truthchain.core.utils import format_file_size

logger = structlog.get_logger()


class BlobStore(ABC):
    """Content storage for attestation payloads (metadata + proof)."""

    name = "abstract"

    @abstractmethod
    def put(self, data: bytes) -> str:
        """Store bytes and return an opaque blob id."""
        pass

    @abstractmethod
    def get(self, blob_id: str) -> bytes:
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"backend": self.name, "available": True, "error": None}


class WalrusBlobStore(BlobStore):
    """Walrus publisher/aggregator HTTP API with retrying session."""

    name = "walrus"

    def __init__(
        self,
        publisher_url: str,
        aggregator_url: str,
        epochs: int = 5,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        if not publisher_url or not aggregator_url:
            raise StorageError("Walrus service not configured", stage="blob_store_init")

        self.publisher_url = publisher_url.rstrip("/")
        self.aggregator_url = aggregator_url.rstrip("/")
        self.epochs = epochs
        self.timeout = timeout
        self.session = session or self._create_session()

        logger.info("Walrus HTTP session initialized",
                    publisher=self.publisher_url, aggregator=self.aggregator_url)

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def put(self, data: bytes) -> str:
        url = f"{self.publisher_url}/v1/blobs"
        logger.info("Uploading blob to Walrus", url=url, size=format_file_size(len(data)))

        start_time = time.time()
        try:
            response = self.session.put(
                url,
                params={"epochs": self.epochs},
                data=data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error("Walrus upload failed",
                         error=str(e), status_code=getattr(e.response, "status_code", None))
            raise StorageError(f"Walrus upload failed: {e}", stage="blob_uploading")
        except ValueError as e:
            raise StorageError(f"Walrus returned invalid JSON: {e}", stage="blob_uploading")

        blob_id = (
            (result.get("newlyCreated") or {}).get("blobObject", {}).get("blobId")
            or (result.get("alreadyCertified") or {}).get("blobId")
        )
        if not blob_id:
            raise StorageError("No blob ID in Walrus response", stage="blob_uploading",
                               details={"response": result})

        logger.info("Walrus upload completed successfully",
                    blob_id=blob_id,
                    already_certified="alreadyCertified" in result,
                    upload_time_seconds=round(time.time() - start_time, 2))
        return blob_id

    def get(self, blob_id: str) -> bytes:
        url = f"{self.aggregator_url}/v1/blobs/{blob_id}"
        logger.info("Retrieving blob from Walrus", blob_id=blob_id)

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("Walrus retrieval failed",
                         blob_id=blob_id, error=str(e),
                         status_code=getattr(e.response, "status_code", None))
            raise StorageError(f"Walrus retrieval failed: {e}", stage="blob_fetch",
                               details={"blob_id": blob_id})
        return response.content

    def blob_url(self, blob_id: str) -> str:
        return f"{self.aggregator_url}/v1/blobs/{blob_id}"

    def health_check(self) -> Dict[str, Any]:
        health = {"backend": self.name, "available": False, "error": None}
        try:
            response = self.session.get(f"{self.aggregator_url}/v1/api", timeout=5)
            if response.status_code < 500:
                health["available"] = True
            else:
                health["error"] = f"HTTP {response.status_code}"
        except Exception as e:
            health["error"] = str(e)
        return health


class LocalBlobStore(BlobStore):
    """Content-addressed files on local disk, for development without Walrus."""

    name = "local"

    def __init__(self, root: str = "uploads/blobs"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("Local blob store initialized", root=str(self.root))

    def put(self, data: bytes) -> str:
        blob_id = hashlib.sha256(data).hexdigest()
        path = self.root / blob_id
        try:
            if not path.exists():
                path.write_bytes(data)
        except OSError as e:
            logger.error("Local blob write failed", path=str(path), error=str(e))
            raise StorageError(f"Local blob write failed: {e}", stage="blob_uploading")

        logger.info("Local upload completed successfully", blob_id=blob_id, size=format_file_size(len(data)))
        return blob_id

    def get(self, blob_id: str) -> bytes:
        path = self.root / Path(blob_id).name
        try:
            return path.read_bytes()
        except OSError as e:
            logger.error("Local blob read failed", blob_id=blob_id, error=str(e))
            raise StorageError(f"Blob not found: {blob_id}", stage="blob_fetch",
                               details={"blob_id": blob_id})


class MemoryBlobStore(BlobStore):
    """Process-local blob store used by tests and the in-memory ledger setup."""

    name = "memory"

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes) -> str:
        blob_id = hashlib.sha256(data).hexdigest()
        with self._lock:
            self._blobs[blob_id] = data
        return blob_id

    def get(self, blob_id: str) -> bytes:
        with self._lock:
            data = self._blobs.get(blob_id)
        if data is None:
            raise StorageError(f"Blob not found: {blob_id}", stage="blob_fetch",
                               details={"blob_id": blob_id})
        return data

    def __len__(self) -> int:
        return len(self._blobs)


def create_blob_store(backend: Optional[str] = None) -> BlobStore:
    """Build the configured blob store."""
    from truthchain import config

    backend = (backend or config.BLOB_BACKEND).lower()
    if backend == "walrus":
        return WalrusBlobStore(
            publisher_url=config.WALRUS_PUBLISHER_URL,
            aggregator_url=config.WALRUS_AGGREGATOR_URL,
            epochs=config.WALRUS_EPOCHS,
            timeout=config.HTTP_TIMEOUT,
        )
    if backend == "local":
        return LocalBlobStore(config.LOCAL_BLOB_DIR)
    if backend == "memory":
        return MemoryBlobStore()
    raise ValueError(f"Unsupported blob backend: {backend}")
