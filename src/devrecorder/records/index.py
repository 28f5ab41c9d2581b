"""In-memory index over active records.

Readers take one ``IndexSnapshot`` and work on it; writers build a new
snapshot and swap the reference. A reader therefore sees either the old or
the new index, never a half-built one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from devrecorder.records.types import Record, RecordState

logger = logging.getLogger(__name__)

SUMMARY_MATCH_SCORE = 10
TAG_MATCH_SCORE = 5
FILE_MATCH_SCORE = 3

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class IndexSnapshot:
    """Immutable view. Never mutate the dicts of a published snapshot."""

    records: dict[str, Record] = field(default_factory=dict)
    by_date: dict[str, tuple[str, ...]] = field(default_factory=dict)
    by_tag: dict[str, tuple[str, ...]] = field(default_factory=dict)
    by_file: dict[str, tuple[str, ...]] = field(default_factory=dict)
    # id -> (bucket name, key) pairs it was filed under
    refs: dict[str, tuple[tuple[str, str], ...]] = field(default_factory=dict)


_BUCKETS = ("by_date", "by_tag", "by_file")


def _bucket_keys(record: Record) -> list[tuple[str, str]]:
    keys = [("by_date", record.date)]
    keys += [("by_tag", tag) for tag in dict.fromkeys(record.tags)]
    keys += [("by_file", path) for path in dict.fromkeys(record.related_files)]
    return keys


def _build(records: Iterable[Record]) -> IndexSnapshot:
    entries: dict[str, Record] = {}
    buckets: dict[str, dict[str, list[str]]] = {name: {} for name in _BUCKETS}
    refs: dict[str, tuple[tuple[str, str], ...]] = {}
    for record in records:
        if record.state is not RecordState.ACTIVE or not record.id:
            continue
        if record.id in entries:
            logger.warning("Duplicate id %s while indexing, keeping first", record.id)
            continue
        entries[record.id] = record
        keys = _bucket_keys(record)
        for name, key in keys:
            buckets[name].setdefault(key, []).append(record.id)
        refs[record.id] = tuple(keys)
    return IndexSnapshot(
        records=entries,
        by_date={k: tuple(v) for k, v in buckets["by_date"].items()},
        by_tag={k: tuple(v) for k, v in buckets["by_tag"].items()},
        by_file={k: tuple(v) for k, v in buckets["by_file"].items()},
        refs=refs,
    )


def _without(snapshot: IndexSnapshot, doc_id: str) -> IndexSnapshot:
    """Copy of ``snapshot`` minus ``doc_id``. Only touched buckets are rebuilt."""
    records = dict(snapshot.records)
    records.pop(doc_id, None)
    refs = dict(snapshot.refs)
    keys = refs.pop(doc_id, ())
    buckets = {name: dict(getattr(snapshot, name)) for name in _BUCKETS}
    for name, key in keys:
        remaining = tuple(i for i in buckets[name].get(key, ()) if i != doc_id)
        if remaining:
            buckets[name][key] = remaining
        else:
            buckets[name].pop(key, None)
    return IndexSnapshot(records=records, refs=refs, **buckets)


def _with(snapshot: IndexSnapshot, record: Record) -> IndexSnapshot:
    records = dict(snapshot.records)
    records[record.id] = record
    refs = dict(snapshot.refs)
    keys = _bucket_keys(record)
    refs[record.id] = tuple(keys)
    buckets = {name: dict(getattr(snapshot, name)) for name in _BUCKETS}
    for name, key in keys:
        buckets[name][key] = buckets[name].get(key, ()) + (record.id,)
    return IndexSnapshot(records=records, refs=refs, **buckets)


class CacheIndex:
    """Swappable snapshot of the active record set with date/tag/file lookups."""

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self._snapshot = _build(records)
        # Serializes writers; readers never take it.
        self._write_lock = threading.Lock()

    # ── Writes ────────────────────────────────────────────────

    def rebuild(self, records: Iterable[Record]) -> None:
        """Replace the whole index in one swap."""
        snapshot = _build(records)
        with self._write_lock:
            self._snapshot = snapshot
        logger.debug("Index rebuilt: %d records", len(snapshot.records))

    def insert(self, record: Record) -> None:
        """Add (or replace) one record. Archived records are removed instead."""
        if record.state is not RecordState.ACTIVE:
            self.remove(record.id)
            return
        with self._write_lock:
            current = self._snapshot
            if record.id in current.records:
                current = _without(current, record.id)
            self._snapshot = _with(current, record)

    def remove(self, doc_id: str) -> None:
        """Drop a record from the map and from every bucket it was filed under."""
        with self._write_lock:
            if doc_id not in self._snapshot.records:
                return
            self._snapshot = _without(self._snapshot, doc_id)

    # ── Reads ─────────────────────────────────────────────────

    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def __len__(self) -> int:
        return len(self._snapshot.records)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._snapshot.records

    def get(self, doc_id: str) -> Record | None:
        return self._snapshot.records.get(doc_id)

    def records(self) -> list[Record]:
        return list(self._snapshot.records.values())

    def by_tag(self, tag: str) -> list[Record]:
        snap = self._snapshot
        return [snap.records[i] for i in snap.by_tag.get(tag, ())]

    def by_file(self, path: str) -> list[Record]:
        snap = self._snapshot
        return [snap.records[i] for i in snap.by_file.get(path, ())]

    def by_date(self, day: str) -> list[Record]:
        snap = self._snapshot
        return [snap.records[i] for i in snap.by_date.get(day, ())]

    def recent(self, n: int = 5) -> list[Record]:
        """The ``n`` most recently created records."""
        records = sorted(
            self._snapshot.records.values(),
            key=lambda r: r.created_at or _EPOCH,
            reverse=True,
        )
        return records[:n]

    def search(self, query: str, limit: int = 3) -> list[tuple[Record, int]]:
        """Score every record against ``query`` and return the top ``limit``.

        +10 if the query occurs in the summary, +5 per tag and +3 per related
        file that the query mentions. Ties keep insertion order.
        """
        needle = query.lower()
        scored: list[tuple[Record, int]] = []
        for record in self._snapshot.records.values():
            score = 0
            if needle and needle in record.summary.lower():
                score += SUMMARY_MATCH_SCORE
            for tag in record.tags:
                if tag and tag.lower() in needle:
                    score += TAG_MATCH_SCORE
            for path in record.related_files:
                if path and path.lower() in needle:
                    score += FILE_MATCH_SCORE
            if score > 0:
                scored.append((record, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]
