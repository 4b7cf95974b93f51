import pytest

from truthchain.core.ledger import InMemoryLedgerBackend, LedgerClient, LookupRetryPolicy
from truthchain.models.attestation import IndexEntry, SearchFilters


def entry(n, creator="0xalice", source="reuters.com", timestamp=None, media_type="photo", ai=False):
    return IndexEntry(
        attestation_id=f"0x{n:04x}",
        media_hash=f"{n:064x}",
        creator=creator,
        source=source,
        timestamp=1000 * n if timestamp is None else timestamp,
        media_type=media_type,
        is_ai_generated=ai,
    )


@pytest.fixture
def populated(index):
    index.insert(entry(1, "0xalice", "reuters.com"))
    index.insert(entry(2, "0xalice", "apnews.com", media_type="video"))
    index.insert(entry(3, "0xbob", "reuters.com", ai=True))
    index.insert(entry(4, "0xbob", "apnews.com", media_type="video", ai=True))
    index.insert(entry(5, "0xcarol", "bbc.co.uk"))
    return index


def ids(entries):
    return [e.attestation_id for e in entries]


def test_creator_and_source_intersect(populated):
    results = populated.search(SearchFilters(creator="0xalice", source="reuters.com"))
    assert ids(results) == ["0x0001"]

    swapped = populated.search(SearchFilters(source="reuters.com", creator="0xalice"))
    assert ids(swapped) == ids(results)


@pytest.mark.parametrize("creator, source", [
    ("0xalice", "reuters.com"),
    ("0xbob", "apnews.com"),
    ("0xcarol", "reuters.com"),
    ("0xnobody", "bbc.co.uk"),
    ("0xalice", "unknown.example"),
])
def test_combined_filter_is_set_intersection(populated, creator, source):
    by_creator = set(ids(populated.search(SearchFilters(creator=creator))))
    by_source = set(ids(populated.search(SearchFilters(source=source))))
    combined = ids(populated.search(SearchFilters(creator=creator, source=source)))

    assert set(combined) == by_creator & by_source
    assert len(combined) == len(set(combined))


def test_source_only_search(populated):
    assert ids(populated.search(SearchFilters(source="apnews.com"))) == ["0x0004", "0x0002"]
    assert ids(populated.by_source("reuters.com")) == ["0x0003", "0x0001"]


def test_creator_only_search(populated):
    assert ids(populated.by_creator("0xbob")) == ["0x0004", "0x0003"]
    assert populated.by_creator("0xnobody") == []


def test_no_filters_returns_everything_newest_first(populated):
    assert ids(populated.search()) == ["0x0005", "0x0004", "0x0003", "0x0002", "0x0001"]


def test_date_type_and_ai_filters(populated):
    in_range = populated.search(SearchFilters(date_from=2000, date_to=4000))
    assert ids(in_range) == ["0x0004", "0x0003", "0x0002"]

    videos = populated.search(SearchFilters(media_type="video"))
    assert ids(videos) == ["0x0004", "0x0002"]

    ai_by_bob = populated.search(SearchFilters(creator="0xbob", is_ai_generated=True, media_type="photo"))
    assert ids(ai_by_bob) == ["0x0003"]

    human = populated.search(SearchFilters(is_ai_generated=False))
    assert ids(human) == ["0x0005", "0x0002", "0x0001"]


def test_equal_timestamps_are_ordered_by_id(index):
    index.insert(entry(2, timestamp=500))
    index.insert(entry(1, timestamp=500))
    assert ids(index.search()) == ["0x0001", "0x0002"]


def test_reinsert_replaces_secondary_keys(populated):
    populated.insert(entry(1, "0xdave", "reuters.com"))

    assert ids(populated.by_creator("0xalice")) == ["0x0002"]
    assert ids(populated.by_creator("0xdave")) == ["0x0001"]
    assert populated.size()["attestations"] == 5


def test_update_verification_count(populated):
    assert populated.update_verification_count("0x0003", 7) is True
    assert populated.get("0x0003").verification_count == 7
    assert populated.update_verification_count("0xmissing", 1) is False


def test_increment_verification_count(populated):
    assert populated.increment_verification_count("0x0001") == 1
    assert populated.increment_verification_count("0x0001") == 2
    assert populated.increment_verification_count("0x0001", floor=5) == 6
    assert populated.increment_verification_count("0x0001", floor=3) == 7
    assert populated.get("0x0001").verification_count == 7


def test_increment_unknown_id(populated):
    assert populated.increment_verification_count("0x0063") is None
    assert populated.get("0x0063") is None

    assert populated.increment_verification_count("0x0063", floor=4, seed_entry=entry(99, "0xdave")) == 5
    assert ids(populated.by_creator("0xdave")) == ["0x0063"]


def test_stats(populated):
    populated.update_verification_count("0x0001", 2)
    populated.update_verification_count("0x0005", 3)
    stats = populated.stats(limit=2)

    assert stats.total_attestations == 5
    assert stats.total_verifications == 5
    assert [(c.name, c.count) for c in stats.top_creators] == [("0xalice", 2), ("0xbob", 2)]
    assert [(s.name, s.count) for s in stats.top_sources] == [("reuters.com", 2), ("apnews.com", 2)]
    assert stats.attestations_by_type == {"photo": 3, "video": 2}
    assert ids(stats.recent_attestations) == ["0x0005", "0x0004"]


def test_recent_size_and_clear(populated):
    assert ids(populated.recent(2)) == ["0x0005", "0x0004"]
    assert populated.size() == {"attestations": 5, "creators": 3, "sources": 3}

    populated.clear()
    assert populated.size() == {"attestations": 0, "creators": 0, "sources": 0}
    assert populated.search() == []


def test_rebuild_from_ledger(index):
    clock = iter(range(1000, 10000, 1000))
    ledger = LedgerClient(InMemoryLedgerBackend(clock=lambda: next(clock)), LookupRetryPolicy(retries=0))
    first = ledger.register("a" * 64, "blob-a", "reuters.com", "photo")
    second = ledger.register("b" * 64, "blob-b", "bbc.co.uk", "video", True)
    index.insert(entry(99, "0xstale", "stale.example"))

    assert index.rebuild(ledger) == 2
    assert index.get("0x0063") is None
    assert ids(index.search()) == [second.attestation_id, first.attestation_id]

    rebuilt = index.get(second.attestation_id)
    assert rebuilt.media_hash == "b" * 64
    assert rebuilt.blob_id == "blob-b"
    assert rebuilt.is_ai_generated is True
    assert rebuilt.timestamp == 2000
