import io

import pytest
from PIL import Image

from truthchain.core.ledger import InMemoryLedgerBackend, LedgerClient, LookupRetryPolicy
from truthchain.core.storage import MemoryBlobStore
from truthchain.services.attestation import AttestationService
from truthchain.services.indexing import AttestationIndex
from truthchain.services.normalizer import ContentNormalizer
from truthchain.services.proofs import MerkleProofStrategy
from truthchain.services.reputation import ReputationTracker
from truthchain.services.similarity import SimilarityGuard


class FakeSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


def make_image(fmt="PNG", size=(32, 24), mode="RGB"):
    """Deterministic test image encoded in the given container format."""
    image = Image.new(mode, size)
    pixels = image.load()
    for x in range(size[0]):
        for y in range(size[1]):
            if mode == "RGBA":
                pixels[x, y] = (x * 7 % 256, y * 11 % 256, (x + y) * 5 % 256, 255)
            else:
                pixels[x, y] = (x * 7 % 256, y * 11 % 256, (x + y) * 5 % 256)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    return make_image


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def ledger_backend():
    return InMemoryLedgerBackend()


@pytest.fixture
def ledger(ledger_backend, fake_sleep):
    return LedgerClient(ledger_backend, LookupRetryPolicy(retries=3, delay=2.0, sleep=fake_sleep))


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def index():
    return AttestationIndex()


@pytest.fixture
def service(blob_store, ledger, index):
    return AttestationService(
        normalizer=ContentNormalizer(),
        proof_strategy=MerkleProofStrategy(),
        blob_store=blob_store,
        ledger=ledger,
        index=index,
        similarity_guard=SimilarityGuard(),
        reputation=ReputationTracker(),
    )
