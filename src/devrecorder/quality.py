"""Quality scoring: freshness, completeness, references, and the report over a record set."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from devrecorder.errors import RecorderError
from devrecorder.records.types import QualityMarks, Record

if TYPE_CHECKING:
    from devrecorder.records.store import RecordStore

logger = logging.getLogger(__name__)

STALE_BELOW = 50
INCOMPLETE_BELOW = 60
LOW_QUALITY_BELOW = 60


@dataclass
class QualityScores:
    freshness: float  # 0-100, one point lost per day of age
    completeness: float  # 0-100
    reference_count: int
    total: float

    def to_marks(self) -> QualityMarks:
        return QualityMarks(
            freshness=self.freshness,
            completeness=self.completeness,
            reference_count=self.reference_count,
            total=self.total,
        )


@dataclass
class QualityIssue:
    doc_id: str
    type: str  # stale | incomplete | contradiction
    severity: str  # low | medium | high
    message: str


@dataclass
class Contradiction:
    """Several active records describe the same file."""

    doc_ids: list[str]
    file: str

    @property
    def description(self) -> str:
        return f"Multiple implementation records found for {self.file}"


@dataclass
class QualityReport:
    total_documents: int
    average_score: float
    issues: list[QualityIssue] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    fixed: int = 0


class QualityScorer:
    """Scores records. With a store attached, ``report(fix=True)`` caches the scores on disk."""

    def __init__(self, store: RecordStore | None = None, actor: str = "system") -> None:
        self.store = store
        self.actor = actor

    def score(self, record: Record, now: datetime | None = None) -> QualityScores:
        now = now or datetime.now(timezone.utc)
        created = record.created_at
        if created is None:
            freshness = 0.0
        else:
            age_days = (now - created).total_seconds() / 86400
            freshness = min(100.0, max(0.0, 100.0 - age_days))

        completeness = 0.0
        if len(record.summary) > 10:
            completeness += 40
        if record.tags:
            completeness += 30
        if record.related_files:
            completeness += 30

        references = record.reference_count
        total = 0.4 * freshness + 0.4 * completeness + 0.2 * references
        return QualityScores(
            freshness=freshness,
            completeness=completeness,
            reference_count=references,
            total=total,
        )

    def detect_contradictions(self, records: Sequence[Record]) -> list[Contradiction]:
        """One finding per file referenced by more than one record."""
        by_file: dict[str, list[str]] = {}
        for record in records:
            for path in dict.fromkeys(record.related_files):
                by_file.setdefault(path, []).append(record.id)
        return [
            Contradiction(doc_ids=ids, file=path) for path, ids in by_file.items() if len(ids) > 1
        ]

    def detect_stale(
        self, records: Sequence[Record], days: int, now: datetime | None = None
    ) -> list[Record]:
        """Records created more than ``days`` ago."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        return [r for r in records if r.created_at is not None and r.created_at < cutoff]

    def estimate_merged(self, records: Sequence[Record]) -> float:
        """Expected quality of merging ``records``: the mean of their totals."""
        if not records:
            return 0.0
        return sum(self.score(r).total for r in records) / len(records)

    def report(self, records: Sequence[Record], fix: bool = False) -> QualityReport:
        issues: list[QualityIssue] = []
        totals: list[float] = []
        fixed = 0

        for record in records:
            scores = self.score(record)
            totals.append(scores.total)
            if scores.freshness < STALE_BELOW:
                issues.append(
                    QualityIssue(
                        doc_id=record.id,
                        type="stale",
                        severity="medium",
                        message=f"Document is stale (freshness score: {scores.freshness:.1f})",
                    )
                )
            if scores.completeness < INCOMPLETE_BELOW:
                issues.append(
                    QualityIssue(
                        doc_id=record.id,
                        type="incomplete",
                        severity="low",
                        message=(
                            "Document is incomplete "
                            f"(completeness score: {scores.completeness:.1f})"
                        ),
                    )
                )
            if fix and self.store is not None:
                try:
                    self.store.update(
                        record.id,
                        {"quality": scores.to_marks()},
                        actor=self.actor,
                        reason="quality check",
                    )
                    fixed += 1
                except RecorderError as e:
                    logger.warning("Could not store quality marks for %s: %s", record.id, e)

        for contradiction in self.detect_contradictions(records):
            issues.append(
                QualityIssue(
                    doc_id=contradiction.doc_ids[0],
                    type="contradiction",
                    severity="high",
                    message=f"Contradiction detected: {contradiction.description}",
                )
            )

        average = sum(totals) / len(totals) if totals else 0.0
        report = QualityReport(
            total_documents=len(records),
            average_score=average,
            issues=issues,
            recommendations=_recommendations(issues, average),
            fixed=fixed,
        )
        logger.info(
            "Quality check: %d documents, average %.2f, %d issues",
            report.total_documents,
            report.average_score,
            len(report.issues),
        )
        return report


def _recommendations(issues: list[QualityIssue], average: float) -> list[str]:
    recommendations = []
    if average < LOW_QUALITY_BELOW:
        recommendations.append("Overall quality is low. Document review is recommended.")

    counts = {
        kind: sum(1 for i in issues if i.type == kind)
        for kind in ("stale", "contradiction", "incomplete")
    }
    if counts["stale"]:
        recommendations.append(
            f"{counts['stale']} stale document(s) found. Consider archiving them."
        )
    if counts["contradiction"]:
        recommendations.append(
            f"{counts['contradiction']} contradiction(s) found. Consider merging related documents."
        )
    if counts["incomplete"]:
        recommendations.append(
            f"{counts['incomplete']} incomplete document(s) found. Consider updating metadata."
        )
    return recommendations
