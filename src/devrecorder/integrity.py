"""Integrity auditor — well-formedness and half-finished merges.

Issue kinds, each a small dataclass carrying only what its repair needs:
- InvalidMetadata     bad id, missing required field, unparseable timestamp
- IncompleteMerge     merge timestamp set but the merge never finished
- MergeInconsistency  merge sources recorded without a merge timestamp
- MissingChangeLog    record has no change history
- IndexDrift          disk and in-memory index disagree on an active record
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from devrecorder.errors import RecorderError
from devrecorder.records.types import Record, RecordState, now_iso, parse_timestamp

if TYPE_CHECKING:
    from devrecorder.audit import AuditTrail
    from devrecorder.records.index import CacheIndex
    from devrecorder.records.store import RecordStore

logger = logging.getLogger(__name__)

UUID4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)

DEFAULT_AUTHOR = "unknown"
DEFAULT_SUMMARY = "No summary available"
CHANGE_LOG_REASON = "Initialized during sync"


# ── Issue variants ───────────────────────────────────────────


@dataclass(frozen=True)
class InvalidMetadata:
    doc_id: str
    path: str
    problems: tuple[str, ...]

    kind = "invalid_metadata"

    @property
    def bad_id(self) -> bool:
        return any(p.startswith("id:") for p in self.problems)


@dataclass(frozen=True)
class IncompleteMerge:
    doc_id: str
    source_ids: tuple[str, ...]

    kind = "incomplete_operation"


@dataclass(frozen=True)
class MergeInconsistency:
    doc_id: str
    source_ids: tuple[str, ...]

    kind = "incomplete_operation"


@dataclass(frozen=True)
class MissingChangeLog:
    doc_id: str

    kind = "file_memory_mismatch"


@dataclass(frozen=True)
class IndexDrift:
    doc_id: str
    on_disk: bool
    in_index: bool

    kind = "file_memory_mismatch"


IntegrityIssue = (
    InvalidMetadata | IncompleteMerge | MergeInconsistency | MissingChangeLog | IndexDrift
)


@dataclass
class IntegrityReport:
    issues: list[IntegrityIssue] = field(default_factory=list)
    severity: str = "low"  # low | medium | high | critical


@dataclass
class RecoveryResult:
    total: int
    recovered: int


def severity_of(issues: list[IntegrityIssue]) -> str:
    if not issues:
        return "low"
    kinds = {issue.kind for issue in issues}
    if len(issues) > 10 or "invalid_metadata" in kinds:
        return "critical"
    if len(issues) > 5 or "incomplete_operation" in kinds:
        return "high"
    return "medium"


def validate(record: Record) -> list[str]:
    """Problems with a record's required metadata; empty when well-formed."""
    problems = []
    if not record.id:
        problems.append("id: missing")
    elif not UUID4_RE.match(record.id):
        problems.append(f"id: not a uuid4 ({record.id})")
    if not record.created:
        problems.append("created: missing")
    elif parse_timestamp(record.created) is None:
        problems.append(f"created: invalid timestamp ({record.created})")
    if parse_timestamp(record.updated) is None:
        problems.append(f"updated: invalid timestamp ({record.updated or 'missing'})")
    if not record.authors:
        problems.append("author: missing")
    if not record.summary:
        problems.append("summary: missing")
    return problems


class IntegrityAuditor:
    """Checks the record set on disk against its rules and the in-memory index."""

    def __init__(
        self,
        store: RecordStore,
        index: CacheIndex,
        audit: AuditTrail,
        actor: str = "system",
    ) -> None:
        self.store = store
        self.index = index
        self.audit = audit
        self.actor = actor

    # ── Check ─────────────────────────────────────────────────

    def check(self) -> IntegrityReport:
        records = self.store.scan()
        logger.info("Starting integrity check over %d records", len(records))
        issues: list[IntegrityIssue] = []

        for record in records:
            problems = validate(record)
            if problems:
                issues.append(
                    InvalidMetadata(
                        doc_id=record.id,
                        path=str(record.path or ""),
                        problems=tuple(problems),
                    )
                )
                logger.warning("Invalid metadata in %s: %s", record.path, "; ".join(problems))

        for record in records:
            lineage = record.lineage
            if lineage is not None and lineage.timestamp and not lineage.is_complete:
                issues.append(IncompleteMerge(record.id, tuple(lineage.source_ids)))
                logger.warning("Incomplete merge operation: %s", record.id)
            if lineage is not None and lineage.source_ids and not lineage.timestamp:
                issues.append(MergeInconsistency(record.id, tuple(lineage.source_ids)))
                logger.warning("Merge metadata inconsistency: %s", record.id)

        for record in records:
            if record.id and not record.change_log:
                issues.append(MissingChangeLog(record.id))
                logger.warning("Document missing change log: %s", record.id)

        issues.extend(self._index_drift(records))

        severity = severity_of(issues)
        self.audit.log(
            "integrity_check",
            self.actor,
            {
                "issue_count": len(issues),
                "severity": severity,
                "issue_types": [issue.kind for issue in issues],
            },
            impact="high" if severity in ("critical", "high") else "medium",
        )
        logger.info("Integrity check completed: %d issues, severity=%s", len(issues), severity)
        return IntegrityReport(issues=issues, severity=severity)

    def _index_drift(self, records: list[Record]) -> list[IndexDrift]:
        on_disk = {r.id for r in records if r.id and r.state is RecordState.ACTIVE}
        in_index = set(self.index.snapshot().records)
        drift = [IndexDrift(doc_id, True, False) for doc_id in sorted(on_disk - in_index)]
        drift += [IndexDrift(doc_id, False, True) for doc_id in sorted(in_index - on_disk)]
        for issue in drift:
            logger.warning(
                "Index drift for %s (on disk=%s, in index=%s)",
                issue.doc_id,
                issue.on_disk,
                issue.in_index,
            )
        return drift

    # ── Recover ───────────────────────────────────────────────

    def recover(self, issues: list[IntegrityIssue]) -> RecoveryResult:
        """Attempt one repair per issue. Failures are counted, never raised."""
        logger.info("Starting automatic recovery of %d issues", len(issues))
        recovered = 0
        for issue in issues:
            try:
                ok = self._recover_one(issue)
            except RecorderError as e:
                logger.error("Recovery failed for %s %s: %s", issue.kind, issue.doc_id, e)
                ok = False
            if ok:
                recovered += 1

        result = RecoveryResult(total=len(issues), recovered=recovered)
        self.audit.log(
            "auto_recovery",
            self.actor,
            {"total": result.total, "recovered": result.recovered},
            impact="high" if recovered < len(issues) else "medium",
        )
        logger.info("Recovery completed: %d/%d", recovered, len(issues))
        return result

    def _recover_one(self, issue: IntegrityIssue) -> bool:
        if isinstance(issue, InvalidMetadata):
            return self._fix_metadata(issue)
        if isinstance(issue, IncompleteMerge):
            return self._complete_merge(issue)
        if isinstance(issue, MergeInconsistency):
            return self._fix_merge_inconsistency(issue)
        if isinstance(issue, MissingChangeLog):
            return self._init_change_log(issue)
        if isinstance(issue, IndexDrift):
            return self._resync_index(issue)
        raise TypeError(f"Unknown integrity issue: {issue!r}")

    def _refresh_index(self, record: Record) -> None:
        if record.state is RecordState.ACTIVE:
            self.index.insert(record)
        else:
            self.index.remove(record.id)

    def _fix_metadata(self, issue: InvalidMetadata) -> bool:
        if issue.bad_id:
            # ids are immutable; a record without a valid one needs a human
            logger.warning("Cannot repair record id in %s", issue.path)
            return False
        record = self.store.get(issue.doc_id)
        patch: dict = {}
        if parse_timestamp(record.created) is None:
            patch["created"] = now_iso()
        if not record.authors:
            patch["authors"] = [DEFAULT_AUTHOR]
        if not record.summary:
            patch["summary"] = DEFAULT_SUMMARY
        # update() always restamps ``updated``
        record = self.store.update(
            issue.doc_id, patch, actor=self.actor, reason="metadata repair", action="repaired"
        )
        self._refresh_index(record)
        self.audit.log(
            "fix_metadata",
            self.actor,
            {"doc_id": issue.doc_id, "fields": sorted(patch) + ["updated"]},
            impact="medium",
        )
        return True

    def _complete_merge(self, issue: IncompleteMerge) -> bool:
        if len(issue.source_ids) < 2:
            logger.warning("Merge %s has fewer than 2 sources, cannot complete", issue.doc_id)
            return False
        for source_id in issue.source_ids:
            try:
                source = self.store.get(source_id)
            except RecorderError:
                logger.warning("Merge source %s of %s is gone", source_id, issue.doc_id)
                continue
            if source.state is RecordState.ACTIVE:
                self.store.archive(
                    source_id, actor=self.actor, reason=f"merged into {issue.doc_id}"
                )
                self.index.remove(source_id)
        record = self.store.get(issue.doc_id)
        lineage = record.lineage
        if lineage is None:
            return False
        record = self.store.update(
            issue.doc_id,
            {"lineage": replace(lineage, completed=True)},
            actor=self.actor,
            reason="stalled merge completed",
            action="merged",
        )
        self._refresh_index(record)
        self.audit.log(
            "complete_operation",
            self.actor,
            {"doc_id": issue.doc_id, "operation": "merge", "source_ids": list(issue.source_ids)},
            impact="medium",
        )
        return True

    def _fix_merge_inconsistency(self, issue: MergeInconsistency) -> bool:
        if len(issue.source_ids) < 2:
            logger.warning("Merge lineage of %s lists fewer than 2 sources", issue.doc_id)
            return False
        record = self.store.get(issue.doc_id)
        lineage = record.lineage
        if lineage is None:
            return False
        stamp = record.updated if parse_timestamp(record.updated) else now_iso()
        record = self.store.update(
            issue.doc_id,
            {"lineage": replace(lineage, timestamp=stamp)},
            actor=self.actor,
            reason="merge timestamp restored",
            action="repaired",
        )
        self._refresh_index(record)
        self.audit.log(
            "complete_operation",
            self.actor,
            {"doc_id": issue.doc_id, "operation": "merge_inconsistency"},
            impact="medium",
        )
        return True

    def _init_change_log(self, issue: MissingChangeLog) -> bool:
        record = self.store.get(issue.doc_id)
        actor = record.authors[0] if record.authors else DEFAULT_AUTHOR
        record = self.store.ensure_change_log(issue.doc_id, actor=actor, reason=CHANGE_LOG_REASON)
        self._refresh_index(record)
        self.audit.log(
            "sync_file_to_memory",
            self.actor,
            {"doc_id": issue.doc_id, "change_log_initialized": True},
            impact="low",
        )
        return True

    def _resync_index(self, issue: IndexDrift) -> bool:
        if (issue.doc_id in self.index) != issue.on_disk:
            self.index.rebuild(self.store.list_active())
        self.audit.log(
            "sync_file_to_memory",
            self.actor,
            {"doc_id": issue.doc_id, "index_rebuilt": True},
            impact="low",
        )
        return (issue.doc_id in self.index) == issue.on_disk
