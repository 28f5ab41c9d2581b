"""Recorder — the hub wiring store, index, engines and auditors together.

Responsibilities:
1. Keep the in-memory index in step with every write (create, archive, delete, merge)
2. Lane locks — serialize merge runs so two cycles never consolidate the same records
3. Record creation — body, tags, summaries, near-duplicate warnings
4. Merge / quality / integrity entry points
5. Render every operation as text for the tool boundary

Read operations (search, history) answer with an empty result when the
store misbehaves; write operations raise.
"""

from __future__ import annotations

import asyncio
import logging

from devrecorder.audit import AuditTrail
from devrecorder.config import RecorderConfig
from devrecorder.engines import build_embedder, build_summarizer
from devrecorder.engines.base import EmbedderChain, SummarizerChain
from devrecorder.errors import NotFound, RecorderError, ValidationError
from devrecorder.integrity import (
    IntegrityAuditor,
    IntegrityIssue,
    IntegrityReport,
    RecoveryResult,
)
from devrecorder.merge import MergeCoordinator, MergeReport
from devrecorder.quality import QualityScorer
from devrecorder.records.index import CacheIndex
from devrecorder.records.metadata import build_body, generate_tags, prompt_hash
from devrecorder.records.store import RecordStore
from devrecorder.records.types import Record, RecordDraft, unique
from devrecorder.similarity import find_exact_duplicates, find_near_duplicates

logger = logging.getLogger(__name__)

SUMMARY_LENGTH = 100
ULTRA_SUMMARY_LENGTH = 50
STANDARD_SUMMARY_LENGTH = 200

MANAGE_ACTIONS = ("archive", "delete")


class Recorder:
    """Implementation-history recorder: the operations behind every tool."""

    def __init__(
        self,
        config: RecorderConfig,
        summarizer: SummarizerChain | None = None,
        embedder: EmbedderChain | None = None,
    ) -> None:
        self.config = config
        self.actor = config.documents.author
        self.store = RecordStore(config.documents.docs_dir)
        self.index = CacheIndex()
        self.audit = AuditTrail(config.audit_log_path, max_bytes=config.audit.max_bytes)
        self.summarizer = summarizer or build_summarizer(config.summarizer)
        self.embedder = embedder if embedder is not None else build_embedder(config.embedder)
        self.quality = QualityScorer(self.store, actor=self.actor)
        self.merger = MergeCoordinator(
            self.store,
            self.index,
            self.summarizer,
            self.audit,
            self.quality,
            embedder=self.embedder,
            file_overlap_threshold=config.merge.file_overlap_threshold,
            actor=self.actor,
        )
        self.auditor = IntegrityAuditor(self.store, self.index, self.audit)
        self._lane_locks: dict[str, asyncio.Lock] = {}
        self.reload()

    def reload(self) -> None:
        """Rebuild the index from the active records on disk."""
        self.index.rebuild(self.store.list_active())
        logger.info("Loaded %d active records into memory", len(self.index))

    # ── Lane Queue (per-operation serialization) ─────────────

    def _get_lane_lock(self, lane: str) -> asyncio.Lock:
        if lane not in self._lane_locks:
            self._lane_locks[lane] = asyncio.Lock()
        return self._lane_locks[lane]

    # ── Search ────────────────────────────────────────────────

    async def search(
        self,
        prompt: str,
        max_results: int | None = None,
        threshold: float | None = None,
    ) -> str:
        """Recent records plus the best keyword matches for ``prompt``.

        ``threshold`` is accepted for tool compatibility; keyword scores are
        not normalized, so it does not filter.
        """
        limit = self.config.search.max_results if max_results is None else max_results
        try:
            recent = self.index.recent(self.config.search.recent_count)
            related = [record for record, _ in self.index.search(prompt, limit)]
        except Exception as e:
            logger.error("Search failed, answering empty: %s", e)
            recent, related = [], []
        return _format_search(recent, related)

    async def search_by_keyword(self, keyword: str, tags: list[str] | None = None) -> str:
        """Disk-backed search over summary and body, newest first."""
        try:
            results = self.store.query(
                keyword=keyword,
                tags=tags,
                include_archived=self.config.search.include_archived,
            )
        except RecorderError as e:
            logger.error("Keyword search failed: %s", e)
            results = []
        if not results:
            return "No results found."
        return "\n\n".join(
            f"{n}. {r.summary} ({r.created})\n   File: {r.path}" for n, r in enumerate(results, 1)
        )

    # ── Record ────────────────────────────────────────────────

    async def record(
        self,
        files: list[str],
        prompt: str,
        summary: str | None = None,
        actor: str | None = None,
    ) -> str:
        """Create a record for an implementation and warn about near-duplicates."""
        if not prompt or not prompt.strip():
            raise ValidationError("prompt", "must not be empty")
        actor = actor or self.actor
        files = unique([f for f in files if f])

        body = build_body(files, prompt)
        summary = summary or await self.summarizer.summarize(body, SUMMARY_LENGTH)
        draft = RecordDraft(
            summary=summary,
            body=body,
            authors=[actor],
            tags=generate_tags(prompt, files),
            prompt_hash=prompt_hash(prompt),
            related_files=files,
            ultra_summary=await self.summarizer.summarize(body, ULTRA_SUMMARY_LENGTH),
            standard_summary=await self.summarizer.summarize(body, STANDARD_SUMMARY_LENGTH),
            embedding_model=self.config.embedder.model,
        )
        record = self.store.create(draft, actor=actor)

        existing = self.index.records()
        self.index.insert(record)
        logger.info("Record added to memory: %s (%d cached)", record.id, len(self.index))

        near = find_near_duplicates(
            record, existing, threshold=self.config.merge.duplicate_warning_threshold
        )
        exact = find_exact_duplicates(record, existing)

        self.audit.log(
            "document_created",
            actor,
            {"doc_id": record.id, "files": record.related_files},
            impact="low",
        )
        return _format_created(record, near, exact)

    # ── Manage ────────────────────────────────────────────────

    async def manage(self, action: str, doc_id: str, actor: str | None = None) -> str:
        actor = actor or self.actor
        if action == "archive":
            self.store.archive(doc_id, actor=actor, reason="manual archive")
            self.index.remove(doc_id)
            self.audit.log("document_archived", actor, {"doc_id": doc_id}, impact="medium")
            return f"Document archived: {doc_id}"
        if action == "delete":
            self.store.delete(doc_id, actor=actor)
            self.index.remove(doc_id)
            self.audit.log("document_deleted", actor, {"doc_id": doc_id}, impact="high")
            return f"Document deleted: {doc_id}"
        raise ValidationError(
            "action", f"must be one of {', '.join(MANAGE_ACTIONS)}, got {action!r}"
        )

    # ── Merge ─────────────────────────────────────────────────

    async def merge_run(
        self, threshold: float | None = None, auto_merge: bool = True
    ) -> str:
        threshold = self.config.merge.threshold if threshold is None else threshold
        async with self._get_lane_lock("merge"):
            report = await self.merger.run(threshold, auto_merge=auto_merge, actor=self.actor)
        return _format_merge_report(report, auto_merge)

    async def merge_preview(self, threshold: float | None = None) -> str:
        threshold = self.config.merge.threshold if threshold is None else threshold
        previews = await self.merger.preview(threshold)
        if not previews:
            return "No similar documents found that can be merged."
        sections = []
        for n, preview in enumerate(previews, 1):
            group = preview.group
            sections.append(
                f"## Merge group {n}\n"
                f"- Similarity: {round(group.similarity * 100)}%\n"
                f"- Reason: {', '.join(group.reasons)}\n"
                f"- Documents: {len(group.members)}\n"
                f"- Summaries: {', '.join(m.summary for m in group.members)}\n"
                f"- Estimated quality: {round(preview.estimated_quality)}\n\n"
                f"### Preview\n{preview.preview_text}\n"
            )
        return "\n---\n\n".join(sections)

    # ── Quality ───────────────────────────────────────────────

    async def quality_check(self, fix: bool = False) -> str:
        records = self.store.list_active()
        report = self.quality.report(records, fix=fix)
        if fix:
            self.index.rebuild(self.store.list_active())
        issues = (
            "\n".join(f"- [{i.severity}] {i.message} (ID: {i.doc_id})" for i in report.issues)
            or "None"
        )
        recommendations = "\n".join(f"- {r}" for r in report.recommendations) or "None"
        text = (
            "# Document quality report\n\n"
            "## Overview\n"
            f"- Total documents: {report.total_documents}\n"
            f"- Average score: {report.average_score:.2f}\n"
        )
        if fix:
            text += f"- Scores stored: {report.fixed}\n"
        return text + f"\n## Issues\n{issues}\n\n## Recommendations\n{recommendations}\n"

    # ── History / rollback ────────────────────────────────────

    async def history(self, doc_id: str) -> str:
        try:
            record = self.store.get(doc_id)
        except NotFound:
            return f"Document not found: {doc_id}"
        except RecorderError as e:
            logger.error("History lookup failed for %s: %s", doc_id, e)
            return f"Document not found: {doc_id}"
        if not record.change_log:
            return f"No change history: {doc_id}"
        lines = [
            "# Document history",
            "",
            f"**Document ID:** {doc_id}",
            f"**Summary:** {record.summary}",
            f"**State:** {record.state.value}",
            "",
            "## Changes",
        ]
        for entry in record.change_log:
            lines.append(f"- **{entry.timestamp}** - {entry.action}")
            lines.append(f"  - Actor: {entry.actor}")
            if entry.reason:
                lines.append(f"  - Reason: {entry.reason}")
        return "\n".join(lines) + "\n"

    async def rollback(self, merged_id: str) -> str:
        """Not supported yet: reports the sources a rollback would restore."""
        try:
            record = self.store.get(merged_id)
        except NotFound:
            return f"Document not found: {merged_id}"
        if record.lineage is None or not record.lineage.source_ids:
            return f"Not a merged document: {merged_id}"
        return (
            "Rollback is not yet supported.\n"
            f"Merged from: {', '.join(record.lineage.source_ids)}"
        )

    # ── Integrity ─────────────────────────────────────────────

    async def integrity_check(self, recover: bool = False) -> str:
        report = self.auditor.check()
        result = self.auditor.recover(report.issues) if recover and report.issues else None
        return _format_integrity(report, result)


# ── Text rendering ───────────────────────────────────────────


def _format_search(recent: list[Record], related: list[Record]) -> str:
    lines = ["## Recent implementations", ""]
    if recent:
        lines += [f"• {r.ultra_summary or r.summary} ({r.date})" for r in recent]
    else:
        lines.append("None")
    lines += ["", "## Related past implementations", ""]
    if related:
        for n, r in enumerate(related, 1):
            lines += [f"### {n}. {r.summary}", r.standard_summary or r.summary, ""]
    else:
        lines.append("No related implementations found.")
    return "\n".join(lines).rstrip() + "\n"


def _format_created(
    record: Record,
    near: list[tuple[Record, float]],
    exact: list[Record],
) -> str:
    text = (
        "Implementation document created:\n"
        f"- ID: {record.id}\n"
        f"- Files: {', '.join(record.related_files)}"
    )
    if exact:
        text += "\n\nSame request already recorded:\n"
        text += "\n".join(f"• {r.summary} ({r.date}, ID: {r.id})" for r in exact)
    if near:
        text += "\n\n⚠️ Similar documents detected:\n"
        for other, score in near:
            text += (
                f"\n• {other.summary} ({other.date})\n"
                f"  Similarity: {round(score * 100)}%\n"
                f"  Files: {', '.join(other.related_files)}\n"
            )
        text += "\nMerge them?"
    return text


def _format_merge_report(report: MergeReport, auto_merge: bool) -> str:
    if not report.groups:
        return "No similar documents found that can be merged."
    if not auto_merge:
        return "\n\n".join(
            f"Merge group {n} ({round(g.similarity * 100)}%, {', '.join(g.reasons)}):\n"
            + "\n".join(f"- {m.summary} ({m.id})" for m in g.members)
            for n, g in enumerate(report.groups, 1)
        )
    parts = []
    for n, (group, merged) in enumerate(report.merged, 1):
        parts.append(
            f"Merge group {n}:\n"
            f"- Before: {', '.join(m.summary for m in group.members)}\n"
            f"- After: {merged.summary}\n"
            f"- Archived: {len(group.members)}"
        )
    for failure in report.failures:
        parts.append(
            f"Merge failed ({failure.stage}) for {', '.join(failure.doc_ids)}: {failure.error}"
            + (f"\n- Partial record: {failure.merged_id}" if failure.merged_id else "")
        )
    parts.append(
        f"Total: {report.records_consolidated} documents merged into "
        f"{report.groups_processed}."
    )
    return "\n\n".join(parts)


def _format_integrity(report: IntegrityReport, result: RecoveryResult | None) -> str:
    lines = [
        "# Integrity report",
        "",
        f"- Issues: {len(report.issues)}",
        f"- Severity: {report.severity}",
    ]
    if report.issues:
        lines += ["", "## Issues"]
        lines += [f"- [{issue.kind}] {_describe_issue(issue)}" for issue in report.issues]
    if result is not None:
        lines += ["", f"Recovered {result.recovered} of {result.total} issues."]
    return "\n".join(lines) + "\n"


def _describe_issue(issue: IntegrityIssue) -> str:
    name = type(issue).__name__
    problems = getattr(issue, "problems", ())
    detail = f": {'; '.join(problems)}" if problems else ""
    return f"{name} {issue.doc_id or '(no id)'}{detail}"
