import pytest

from truthchain.core.errors import AlreadyExistsError, LedgerUnavailableError, MediaValidationError
from truthchain.core.ledger import (
    InMemoryLedgerBackend,
    LedgerClient,
    LookupRetryPolicy,
    create_ledger_client,
)

HASH_A = "a" * 64
HASH_B = "b" * 64


def register(client, media_hash=HASH_A, source="example.com"):
    return client.register(media_hash, "blob-1", source, "photo", False, "{}")


class FlakyBackend(InMemoryLedgerBackend):
    """Fails the first `failures` read calls with a transport error."""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    def _maybe_fail(self):
        if self.failures > 0:
            self.failures -= 1
            raise LedgerUnavailableError("connection reset", stage="ledger_rpc")

    def lookup_address(self, media_hash):
        self._maybe_fail()
        return super().lookup_address(media_hash)

    def query_recent_events(self, limit):
        self._maybe_fail()
        return super().query_recent_events(limit)


def test_register_then_lookup(ledger, fake_sleep):
    receipt = register(ledger)
    assert receipt.tx_digest
    assert receipt.attestation_id.startswith("0x")

    record = ledger.lookup(HASH_A)
    assert record.attestation_id == receipt.attestation_id
    assert record.media_hash == HASH_A
    assert record.creator == receipt.creator
    assert record.source == "example.com"
    assert fake_sleep.calls == []


def test_lookup_accepts_uppercase_hash(ledger):
    register(ledger)
    assert ledger.lookup(HASH_A.upper()) is not None


def test_registry_uniqueness(ledger, ledger_backend):
    register(ledger)
    with pytest.raises(AlreadyExistsError) as excinfo:
        register(ledger, source="other.com")

    assert excinfo.value.status_code == 409
    assert len(ledger_backend) == 1
    assert ledger.lookup(HASH_A).source == "example.com"


def test_never_registered_converges_to_none(ledger, fake_sleep):
    assert ledger.lookup(HASH_B) is None
    assert fake_sleep.calls == [2.0, 2.0, 2.0]


def test_lookup_waits_out_visibility_lag(fake_sleep):
    backend = InMemoryLedgerBackend(visibility_lag=2, direct_lookup=False)
    client = LedgerClient(backend, LookupRetryPolicy(retries=3, delay=2.0, sleep=fake_sleep))
    receipt = register(client)

    record = client.lookup(HASH_A)
    assert record.attestation_id == receipt.attestation_id
    assert len(fake_sleep.calls) == 2


def test_lag_beyond_retries_reports_not_found(fake_sleep):
    backend = InMemoryLedgerBackend(visibility_lag=10, direct_lookup=False)
    client = LedgerClient(backend, LookupRetryPolicy(retries=3, delay=0.5, sleep=fake_sleep))
    register(client)

    assert client.lookup(HASH_A) is None
    assert fake_sleep.calls == [0.5, 0.5, 0.5]


def test_event_scan_fallback(fake_sleep):
    backend = InMemoryLedgerBackend(direct_lookup=False)
    client = LedgerClient(backend, LookupRetryPolicy(sleep=fake_sleep))
    register(client, HASH_A)
    register(client, HASH_B)

    assert client.lookup(HASH_A).media_hash == HASH_A
    assert fake_sleep.calls == []


def test_event_scan_respects_limit(fake_sleep):
    backend = InMemoryLedgerBackend(direct_lookup=False)
    client = LedgerClient(backend, LookupRetryPolicy(retries=0, sleep=fake_sleep), event_scan_limit=1)
    register(client, HASH_A)
    register(client, HASH_B)

    assert client.lookup(HASH_B) is not None
    assert client.lookup(HASH_A) is None


def test_transient_error_consumes_a_retry(fake_sleep):
    backend = FlakyBackend(failures=2)
    client = LedgerClient(backend, LookupRetryPolicy(retries=3, delay=1.0, sleep=fake_sleep))
    register(client)

    assert client.lookup(HASH_A) is not None
    assert fake_sleep.calls == [1.0]


def test_unreachable_ledger_raises_after_retries(ledger, ledger_backend, fake_sleep):
    register(ledger)
    ledger_backend.unavailable = True

    with pytest.raises(LedgerUnavailableError) as excinfo:
        ledger.lookup(HASH_A)

    assert excinfo.value.stage == "ledger_lookup"
    assert excinfo.value.status_code == 503
    assert len(fake_sleep.calls) == 3


def test_register_on_unreachable_ledger(ledger, ledger_backend):
    ledger_backend.unavailable = True
    with pytest.raises(LedgerUnavailableError):
        register(ledger)


def test_register_validates_input(ledger, ledger_backend):
    with pytest.raises(MediaValidationError):
        register(ledger, media_hash="abc")
    with pytest.raises(MediaValidationError):
        register(ledger, source="x" * 101)
    with pytest.raises(MediaValidationError):
        ledger.register(HASH_A, "blob", "src", "hologram")
    assert len(ledger_backend) == 0


def test_backend_rejects_short_hash():
    with pytest.raises(MediaValidationError):
        InMemoryLedgerBackend().submit_registration(b"\x00" * 31, "blob", "src", "photo", False, "{}")


def test_recent_events_newest_first(ledger):
    first = register(ledger, HASH_A)
    second = register(ledger, HASH_B)

    events = ledger.recent_events(10)
    assert [e.attestation_id for e in events] == [second.attestation_id, first.attestation_id]
    assert events[0].media_hash == HASH_B


def test_mismatched_record_is_not_returned(ledger, ledger_backend):
    receipt = register(ledger)
    ledger_backend._records[receipt.attestation_id].media_hash = HASH_B
    assert ledger.lookup(HASH_A) is None


def test_retry_policy_backoff():
    assert [LookupRetryPolicy(delay=2.0).delay_for(n) for n in range(3)] == [2.0, 2.0, 2.0]
    policy = LookupRetryPolicy(retries=3, delay=1.0, backoff_factor=2.0)
    assert [policy.delay_for(n) for n in range(3)] == [1.0, 2.0, 4.0]
    assert policy.attempts == 4

    with pytest.raises(ValueError):
        LookupRetryPolicy(retries=-1)


def test_health_check(ledger, ledger_backend):
    assert ledger.health_check()["available"] is True
    ledger_backend.unavailable = True
    assert ledger.health_check()["available"] is False


def test_create_memory_ledger_client():
    client = create_ledger_client("memory")
    assert client.backend.name == "memory"
    with pytest.raises(ValueError):
        create_ledger_client("postgres")
