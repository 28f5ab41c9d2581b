"""Tests for the integrity auditor: rules, severity and recovery."""

from __future__ import annotations

import uuid
from pathlib import Path

import frontmatter
import pytest

from devrecorder.audit import AuditTrail
from devrecorder.integrity import (
    IncompleteMerge,
    IndexDrift,
    IntegrityAuditor,
    InvalidMetadata,
    MergeInconsistency,
    MissingChangeLog,
    severity_of,
    validate,
)
from devrecorder.records.index import CacheIndex
from devrecorder.records.store import RecordStore
from devrecorder.records.types import MergeLineage, Record, RecordDraft, RecordState, now_iso


@pytest.fixture
def store(tmp_path: Path) -> RecordStore:
    return RecordStore(tmp_path / "docs")


@pytest.fixture
def index(store: RecordStore) -> CacheIndex:
    return CacheIndex(store.list_active())


@pytest.fixture
def audit(tmp_path: Path) -> AuditTrail:
    return AuditTrail(tmp_path / "audit.log")


@pytest.fixture
def auditor(store, index, audit) -> IntegrityAuditor:
    return IntegrityAuditor(store, index, audit)


def _write_raw(path: Path, body: str = "body", **meta) -> None:
    path.write_text(frontmatter.dumps(frontmatter.Post(body, **meta)) + "\n", encoding="utf-8")


def _create(store: RecordStore, index: CacheIndex, summary: str = "Add JWT auth",
            lineage: MergeLineage | None = None) -> Record:
    record = store.create(
        RecordDraft(summary=summary, body="b", related_files=["a.py"], lineage=lineage),
        actor="alice",
    )
    index.insert(record)
    return record


class TestValidate:
    def test_well_formed(self):
        record = Record(id=str(uuid.uuid4()), created=now_iso(), updated=now_iso(),
                        authors=["a"], summary="s")
        assert validate(record) == []

    def test_problems(self):
        record = Record(id="abc", created="yesterday", updated="")
        problems = validate(record)
        assert [p.split(":")[0] for p in problems] == [
            "id", "created", "updated", "author", "summary"
        ]


class TestSeverity:
    def test_empty_is_low(self):
        assert severity_of([]) == "low"

    def test_change_log_only_is_medium(self):
        assert severity_of([MissingChangeLog("a")]) == "medium"

    def test_incomplete_operation_is_high(self):
        assert severity_of([IncompleteMerge("a", ("b", "c"))]) == "high"

    def test_invalid_metadata_is_critical(self):
        assert severity_of([InvalidMetadata("a", "p", ("summary: missing",))]) == "critical"

    def test_many_issues_escalate(self):
        assert severity_of([MissingChangeLog(str(n)) for n in range(6)]) == "high"
        assert severity_of([MissingChangeLog(str(n)) for n in range(11)]) == "critical"


class TestCheck:
    def test_clean_store(self, store, index, auditor, audit):
        _create(store, index)
        report = auditor.check()
        assert report.issues == []
        assert report.severity == "low"
        events = audit.search(action="integrity_check")
        assert events[-1].details["issue_count"] == 0

    def test_bad_id_is_unrecoverable(self, store, auditor):
        _write_raw(store.root / "bad.md", id="not-a-uuid", created=now_iso(),
                   updated=now_iso(), author="x", summary="s",
                   change_log=[{"timestamp": now_iso(), "action": "created", "author": "x"}])
        report = auditor.check()
        invalid = [i for i in report.issues if isinstance(i, InvalidMetadata)]
        assert len(invalid) == 1
        assert invalid[0].bad_id
        assert report.severity == "critical"
        assert auditor.recover(invalid).recovered == 0

    def test_incomplete_merge(self, store, index, auditor):
        a = _create(store, index, "A")
        b = _create(store, index, "B")
        lineage = MergeLineage(source_ids=[a.id, b.id], timestamp=now_iso(), completed=False)
        merged = _create(store, index, "Merged: A", lineage=lineage)

        report = auditor.check()
        assert report.issues == [IncompleteMerge(merged.id, (a.id, b.id))]
        assert report.severity == "high"

        result = auditor.recover(report.issues)
        assert result.recovered == 1
        assert store.get(a.id).state is RecordState.ARCHIVED
        assert store.get(b.id).state is RecordState.ARCHIVED
        assert store.get(merged.id).lineage.completed is True
        assert a.id not in index
        assert auditor.check().issues == []

    def test_merge_inconsistency(self, store, index, auditor):
        lineage = MergeLineage(source_ids=["x", "y"], timestamp=None, completed=True)
        merged = _create(store, index, "Merged: X", lineage=lineage)

        report = auditor.check()
        assert report.issues == [MergeInconsistency(merged.id, ("x", "y"))]

        assert auditor.recover(report.issues).recovered == 1
        assert store.get(merged.id).lineage.timestamp
        assert auditor.check().issues == []

    def test_merge_with_one_source_not_repaired(self, store, index, auditor):
        lineage = MergeLineage(source_ids=["x"], timestamp=None, completed=True)
        _create(store, index, "Merged: X", lineage=lineage)
        report = auditor.check()
        assert auditor.recover(report.issues).recovered == 0

    def test_hand_written_record_is_repaired(self, store, index, auditor, audit):
        doc_id = str(uuid.uuid4())
        _write_raw(store.root / "manual.md", id=doc_id, created=now_iso(), updated=now_iso())

        report = auditor.check()
        kinds = sorted(type(i).__name__ for i in report.issues)
        assert kinds == ["IndexDrift", "InvalidMetadata", "MissingChangeLog"]
        invalid = next(i for i in report.issues if isinstance(i, InvalidMetadata))
        assert set(p.split(":")[0] for p in invalid.problems) == {"author", "summary"}

        result = auditor.recover(report.issues)
        assert result.recovered == result.total == 3

        record = store.get(doc_id)
        assert record.authors == ["unknown"]
        assert record.summary == "No summary available"
        assert record.change_log[0].action == "created"
        assert [e.action for e in record.change_log].count("created") == 1
        assert doc_id in index
        assert auditor.check().issues == []
        assert audit.search(action="auto_recovery")[-1].details == {"total": 3, "recovered": 3}

    def test_missing_change_log(self, store, index, auditor):
        doc_id = str(uuid.uuid4())
        _write_raw(store.root / "manual.md", id=doc_id, created=now_iso(),
                   updated=now_iso(), author="carol", summary="Manual")
        index.rebuild(store.list_active())

        report = auditor.check()
        assert report.issues == [MissingChangeLog(doc_id)]
        assert report.severity == "medium"
        assert auditor.recover(report.issues).recovered == 1
        entry = store.get(doc_id).change_log[0]
        assert entry.actor == "carol"
        assert entry.reason == "Initialized during sync"

    def test_stale_index_entry(self, store, index, auditor):
        ghost = Record(id=str(uuid.uuid4()), created=now_iso(), updated=now_iso())
        index.insert(ghost)
        report = auditor.check()
        assert report.issues == [IndexDrift(ghost.id, on_disk=False, in_index=True)]
        assert auditor.recover(report.issues).recovered == 1
        assert ghost.id not in index
