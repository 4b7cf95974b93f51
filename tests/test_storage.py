import pytest
import requests

from truthchain.core.errors import StorageError
from truthchain.core.storage import LocalBlobStore, MemoryBlobStore, WalrusBlobStore, create_blob_store


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b""):
        self.status_code = status_code
        self._payload = payload
        self.content = content

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeSession:
    def __init__(self, put_response=None, get_response=None, error=None):
        self.put_response = put_response
        self.get_response = get_response
        self.error = error
        self.requests = []

    def put(self, url, **kwargs):
        self.requests.append(("PUT", url, kwargs))
        if self.error:
            raise self.error
        return self.put_response

    def get(self, url, **kwargs):
        self.requests.append(("GET", url, kwargs))
        if self.error:
            raise self.error
        return self.get_response


def walrus(session):
    return WalrusBlobStore("https://publisher.test/", "https://aggregator.test", epochs=5, session=session)


def test_memory_store_round_trip():
    store = MemoryBlobStore()
    blob_id = store.put(b"payload")
    assert store.get(blob_id) == b"payload"
    assert store.put(b"payload") == blob_id
    assert len(store) == 1


def test_memory_store_missing_blob():
    with pytest.raises(StorageError) as excinfo:
        MemoryBlobStore().get("nope")
    assert excinfo.value.stage == "blob_fetch"


def test_local_store(tmp_path):
    store = LocalBlobStore(str(tmp_path / "blobs"))
    blob_id = store.put(b"local payload")
    assert (tmp_path / "blobs" / blob_id).read_bytes() == b"local payload"
    assert store.get(blob_id) == b"local payload"

    with pytest.raises(StorageError):
        store.get("0" * 64)


def test_walrus_upload_newly_created():
    session = FakeSession(put_response=FakeResponse(payload={"newlyCreated": {"blobObject": {"blobId": "blob-123"}}}))
    store = walrus(session)

    assert store.put(b"data") == "blob-123"
    method, url, kwargs = session.requests[0]
    assert method == "PUT"
    assert url == "https://publisher.test/v1/blobs"
    assert kwargs["params"] == {"epochs": 5}
    assert kwargs["data"] == b"data"


def test_walrus_upload_already_certified():
    session = FakeSession(put_response=FakeResponse(payload={"alreadyCertified": {"blobId": "blob-old"}}))
    assert walrus(session).put(b"data") == "blob-old"


def test_walrus_upload_without_blob_id():
    session = FakeSession(put_response=FakeResponse(payload={"unexpected": {}}))
    with pytest.raises(StorageError) as excinfo:
        walrus(session).put(b"data")
    assert excinfo.value.stage == "blob_uploading"


def test_walrus_upload_http_error():
    session = FakeSession(put_response=FakeResponse(status_code=500))
    with pytest.raises(StorageError):
        walrus(session).put(b"data")


def test_walrus_fetch():
    session = FakeSession(get_response=FakeResponse(content=b"stored"))
    store = walrus(session)

    assert store.get("blob-123") == b"stored"
    assert session.requests[0][1] == "https://aggregator.test/v1/blobs/blob-123"
    assert store.blob_url("blob-123") == "https://aggregator.test/v1/blobs/blob-123"


def test_walrus_fetch_unreachable():
    session = FakeSession(error=requests.ConnectionError("refused"))
    with pytest.raises(StorageError) as excinfo:
        walrus(session).get("blob-123")
    assert excinfo.value.stage == "blob_fetch"
    assert excinfo.value.status_code == 503


def test_walrus_requires_urls():
    with pytest.raises(StorageError):
        WalrusBlobStore("", "https://aggregator.test")


def test_walrus_health_check():
    healthy = walrus(FakeSession(get_response=FakeResponse(status_code=200))).health_check()
    assert healthy["available"] is True
    down = walrus(FakeSession(error=requests.ConnectionError("refused"))).health_check()
    assert down["available"] is False
    assert "refused" in down["error"]


def test_create_blob_store(tmp_path, monkeypatch):
    from truthchain import config
    monkeypatch.setattr(config, "LOCAL_BLOB_DIR", str(tmp_path))

    assert isinstance(create_blob_store("memory"), MemoryBlobStore)
    assert isinstance(create_blob_store("local"), LocalBlobStore)
    with pytest.raises(ValueError):
        create_blob_store("s3")
