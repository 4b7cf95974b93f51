"""
In-memory attestation index for search and statistics.

The ledger stays authoritative: this is a derived, disposable projection that
can be rebuilt at any time from ledger creation events.
"""

import threading
import structlog
from collections import Counter
from typing import Dict, Iterable, List, Optional, Set

from truthchain.models.attestation import CountEntry, IndexEntry, IndexStats, SearchFilters

logger = structlog.get_logger()


class AttestationIndex:
    """Primary map plus creator/source set-indexes and a recency list."""

    def __init__(self):
        self._entries: Dict[str, IndexEntry] = {}
        self._by_creator: Dict[str, Set[str]] = {}
        self._by_source: Dict[str, Set[str]] = {}
        self._recent: List[str] = []
        self._lock = threading.RLock()

    def insert(self, entry: IndexEntry) -> None:
        with self._lock:
            previous = self._entries.get(entry.attestation_id)
            if previous is not None:
                self._discard_secondary(previous)
                self._recent.remove(previous.attestation_id)

            self._entries[entry.attestation_id] = entry
            self._by_creator.setdefault(entry.creator, set()).add(entry.attestation_id)
            self._by_source.setdefault(entry.source, set()).add(entry.attestation_id)

            self._recent.append(entry.attestation_id)
            self._recent.sort(key=lambda attestation_id: self._entries[attestation_id].timestamp, reverse=True)

        logger.debug("Attestation indexed",
                     attestation_id=entry.attestation_id,
                     creator=entry.creator,
                     source=entry.source)

    def _discard_secondary(self, entry: IndexEntry) -> None:
        for index, key in ((self._by_creator, entry.creator), (self._by_source, entry.source)):
            ids = index.get(key)
            if ids is None:
                continue
            ids.discard(entry.attestation_id)
            if not ids:
                del index[key]

    def update_verification_count(self, attestation_id: str, count: int) -> bool:
        """Set the local verification count; False if the id is not indexed."""
        with self._lock:
            entry = self._entries.get(attestation_id)
            if entry is None:
                return False
            entry.verification_count = count

        logger.debug("Updated verification count", attestation_id=attestation_id, count=count)
        return True

    def increment_verification_count(self, attestation_id: str, floor: int = 0,
                                     seed_entry: Optional[IndexEntry] = None) -> Optional[int]:
        """
        Atomically bump the count to max(floor, current) + 1.

        seed_entry is indexed first when the id is unknown; without it an
        unknown id returns None.
        """
        with self._lock:
            entry = self._entries.get(attestation_id)
            if entry is None:
                if seed_entry is None:
                    return None
                self.insert(seed_entry)
                entry = self._entries[attestation_id]
            count = max(floor, entry.verification_count) + 1
            entry.verification_count = count

        logger.debug("Incremented verification count", attestation_id=attestation_id, count=count)
        return count

    def search(self, filters: Optional[SearchFilters] = None) -> List[IndexEntry]:
        filters = filters or SearchFilters()

        with self._lock:
            candidates: Optional[Set[str]] = None
            if filters.creator is not None:
                candidates = set(self._by_creator.get(filters.creator, ()))
            if filters.source is not None:
                source_ids = self._by_source.get(filters.source, set())
                candidates = set(source_ids) if candidates is None else candidates & source_ids

            ids: Iterable[str] = self._entries.keys() if candidates is None else candidates
            results = [self._entries[attestation_id] for attestation_id in ids]

        if filters.date_from is not None:
            results = [e for e in results if e.timestamp >= filters.date_from]
        if filters.date_to is not None:
            results = [e for e in results if e.timestamp <= filters.date_to]
        if filters.media_type is not None:
            results = [e for e in results if e.media_type == filters.media_type.value]
        if filters.is_ai_generated is not None:
            results = [e for e in results if e.is_ai_generated == filters.is_ai_generated]

        # id as secondary key keeps set-derived candidates in a stable order
        results.sort(key=lambda e: (-e.timestamp, e.attestation_id))
        logger.debug("Index search completed", filters=filters.model_dump(mode="json", exclude_none=True), results=len(results))
        return results

    def stats(self, limit: int = 10) -> IndexStats:
        with self._lock:
            entries = list(self._entries.values())
            recent = [self._entries[attestation_id] for attestation_id in self._recent[:limit]]

        creator_counts = Counter(e.creator for e in entries)
        source_counts = Counter(e.source for e in entries)
        type_counts = Counter(e.media_type for e in entries)

        return IndexStats(
            total_attestations=len(entries),
            total_verifications=sum(e.verification_count for e in entries),
            top_creators=[CountEntry(name=k, count=v) for k, v in creator_counts.most_common(limit)],
            top_sources=[CountEntry(name=k, count=v) for k, v in source_counts.most_common(limit)],
            attestations_by_type=dict(type_counts),
            recent_attestations=recent,
        )

    def by_creator(self, creator: str) -> List[IndexEntry]:
        return self.search(SearchFilters(creator=creator))

    def by_source(self, source: str) -> List[IndexEntry]:
        return self.search(SearchFilters(source=source))

    def get(self, attestation_id: str) -> Optional[IndexEntry]:
        with self._lock:
            return self._entries.get(attestation_id)

    def recent(self, limit: int = 20) -> List[IndexEntry]:
        with self._lock:
            return [self._entries[attestation_id] for attestation_id in self._recent[:limit]]

    def size(self) -> Dict[str, int]:
        with self._lock:
            return {
                "attestations": len(self._entries),
                "creators": len(self._by_creator),
                "sources": len(self._by_source),
            }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_creator.clear()
            self._by_source.clear()
            self._recent.clear()

    def rebuild(self, ledger_client, limit: int = 500) -> int:
        """
        Replace the index contents with the most recent ledger attestations.

        Records that cannot be resolved are indexed from their creation event
        alone. Returns the number of entries indexed.
        """
        events = ledger_client.recent_events(limit)
        entries = []
        for event in events:
            record = ledger_client.get_record(event.attestation_id)
            if record is not None:
                entries.append(record.to_index_entry())
            else:
                entries.append(IndexEntry(
                    attestation_id=event.attestation_id,
                    media_hash=event.media_hash,
                    creator=event.creator,
                    timestamp=event.timestamp_ms,
                ))

        with self._lock:
            self.clear()
            # oldest first so insertion order matches ledger order
            for entry in reversed(entries):
                self.insert(entry)

        logger.info("Index rebuilt from ledger events", events=len(events), indexed=len(entries))
        return len(entries)
