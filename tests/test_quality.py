"""Tests for quality scoring and the quality report."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from devrecorder.quality import QualityScorer
from devrecorder.records.store import RecordStore
from devrecorder.records.types import Record, RecordDraft

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _rec(
    doc_id: str,
    age_days: float = 0,
    summary: str = "Add JWT authentication",
    tags=("auth",),
    files=("src/auth.py",),
    reference_count: int = 0,
    base: datetime = NOW,
) -> Record:
    created = (base - timedelta(days=age_days)).isoformat()
    return Record(
        id=doc_id,
        created=created,
        updated=created,
        summary=summary,
        tags=list(tags),
        related_files=list(files),
        reference_count=reference_count,
    )


@pytest.fixture
def scorer() -> QualityScorer:
    return QualityScorer()


class TestScore:
    def test_old_and_empty_scores_zero(self, scorer: QualityScorer):
        record = _rec("a", age_days=120, summary="todo", tags=(), files=())
        scores = scorer.score(record, now=NOW)
        assert scores.freshness == 0
        assert scores.completeness == 0
        assert scores.total == 0

    def test_fresh_and_complete(self, scorer: QualityScorer):
        scores = scorer.score(_rec("a"), now=NOW)
        assert scores.freshness == 100
        assert scores.completeness == 100
        assert scores.total == pytest.approx(80)

    def test_linear_decay(self, scorer: QualityScorer):
        assert scorer.score(_rec("a", age_days=30), now=NOW).freshness == pytest.approx(70)

    def test_floor_after_100_days(self, scorer: QualityScorer):
        assert scorer.score(_rec("a", age_days=100), now=NOW).freshness == 0
        assert scorer.score(_rec("a", age_days=400), now=NOW).freshness == 0

    def test_completeness_parts(self, scorer: QualityScorer):
        assert scorer.score(_rec("a", tags=(), files=()), now=NOW).completeness == 40
        assert scorer.score(_rec("a", summary="short", files=()), now=NOW).completeness == 30

    def test_reference_count_weight(self, scorer: QualityScorer):
        scores = scorer.score(_rec("a", age_days=200, summary="x", tags=(), files=(),
                                   reference_count=10), now=NOW)
        assert scores.total == pytest.approx(2)

    def test_invalid_created_scores_zero_freshness(self, scorer: QualityScorer):
        record = _rec("a")
        record.created = "not a date"
        assert scorer.score(record, now=NOW).freshness == 0


class TestDetectors:
    def test_contradiction_per_shared_file(self, scorer: QualityScorer):
        records = [
            _rec("a", files=("x.py", "y.py")),
            _rec("b", files=("x.py", "y.py")),
            _rec("c", files=("z.py",)),
        ]
        found = scorer.detect_contradictions(records)
        assert [(c.file, c.doc_ids) for c in found] == [("x.py", ["a", "b"]), ("y.py", ["a", "b"])]

    def test_stale(self, scorer: QualityScorer):
        records = [_rec("old", age_days=120), _rec("new", age_days=5)]
        assert [r.id for r in scorer.detect_stale(records, days=90, now=NOW)] == ["old"]

    def test_estimate_merged_empty(self, scorer: QualityScorer):
        assert scorer.estimate_merged([]) == 0.0


class TestReport:
    def test_flags_issues(self, scorer: QualityScorer):
        records = [
            _rec("stale", age_days=300, files=("a.py",), base=_now()),
            _rec("thin", summary="x", tags=(), files=("a.py",), base=_now()),
        ]
        report = scorer.report(records)
        kinds = sorted(i.type for i in report.issues)
        assert kinds == ["contradiction", "incomplete", "stale"]
        contradiction = next(i for i in report.issues if i.type == "contradiction")
        assert contradiction.severity == "high"
        assert "a.py" in contradiction.message
        assert report.total_documents == 2

    def test_recommendations(self, scorer: QualityScorer):
        report = scorer.report([_rec("old", age_days=300, summary="x", tags=(), files=())])
        assert report.recommendations == [
            "Overall quality is low. Document review is recommended.",
            "1 stale document(s) found. Consider archiving them.",
            "1 incomplete document(s) found. Consider updating metadata.",
        ]

    def test_empty(self, scorer: QualityScorer):
        report = scorer.report([])
        assert report.total_documents == 0
        assert report.average_score == 0.0
        assert report.issues == []

    def test_fix_stores_marks(self, tmp_path: Path):
        store = RecordStore(tmp_path / "docs")
        record = store.create(
            RecordDraft(summary="Add JWT authentication", body="b", tags=["auth"],
                        related_files=["src/auth.py"]),
            actor="alice",
        )
        report = QualityScorer(store).report(store.list_active(), fix=True)
        assert report.fixed == 1
        stored = store.get(record.id)
        assert stored.quality is not None
        assert stored.quality.completeness == 100
        assert stored.change_log[-1].reason == "quality check"

    def test_fix_on_unlogged_record_opens_history_with_created(self, tmp_path: Path):
        store = RecordStore(tmp_path / "docs")
        doc_id = "9b2f7c1e-4d3a-4f5b-8c6d-1e2f3a4b5c6d"
        (store.root / "manual.md").write_text(
            f"---\nid: {doc_id}\ncreated: '2026-01-01T00:00:00+00:00'\n"
            "updated: '2026-01-01T00:00:00+00:00'\nauthor: carol\n"
            "summary: Add JWT authentication\n---\n\nbody\n",
            encoding="utf-8",
        )
        QualityScorer(store).report(store.list_active(), fix=True)
        log = store.get(doc_id).change_log
        assert [e.action for e in log] == ["created", "updated"]
        assert log[0].timestamp == "2026-01-01T00:00:00+00:00"
