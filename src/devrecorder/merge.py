"""Merge coordinator — find near-duplicate records and consolidate them.

One merge cycle:
    Scanning → Grouping → Consolidating → Archiving → Reindexing → Done

A failure stops the current group only. Merges already written stay written
and are listed in the report next to the failures.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from devrecorder.engines.base import Summarizer, SummarizerChain
from devrecorder.engines.fallback import LiteralSummarizer
from devrecorder.errors import Conflict, MergeAborted, RecorderError
from devrecorder.records.metadata import prompt_hash
from devrecorder.records.types import (
    MergeLineage,
    Record,
    RecordDraft,
    RecordState,
    now_iso,
    unique,
)
from devrecorder.similarity import (
    DEFAULT_MERGE_THRESHOLD,
    FILE_OVERLAP_THRESHOLD,
    REASON_VECTOR,
    cosine_similarity,
    file_overlap,
    merge_reason,
)

if TYPE_CHECKING:
    from devrecorder.audit import AuditTrail
    from devrecorder.engines.base import Embedder
    from devrecorder.quality import QualityScorer
    from devrecorder.records.index import CacheIndex
    from devrecorder.records.store import RecordStore

logger = logging.getLogger(__name__)

MERGE_METHOD = "ai_unified"
UNIFY_MAX_LENGTH = 2000
PREVIEW_CHARS = 200

UNIFY_PROMPT = """\
The following are {count} implementation records on the same topic.
Combine them into one document.

Requirements:
- Merge duplicated information
- Keep every distinct implementation detail
- Preserve chronological order
- Answer in Markdown

{text}
"""


@dataclass
class CandidatePair:
    score: float
    reason: str  # vector_similarity | file_overlap
    ids: tuple[str, str]


@dataclass
class MergeGroup:
    """A maximal cluster of transitively overlapping candidates."""

    members: list[Record]
    similarity: float
    reasons: list[str] = field(default_factory=list)

    @property
    def ids(self) -> list[str]:
        return [m.id for m in self.members]


@dataclass
class MergeFailure:
    doc_ids: list[str]
    stage: str
    error: str
    merged_id: str | None = None


@dataclass
class MergeReport:
    groups: list[MergeGroup] = field(default_factory=list)
    groups_processed: int = 0
    records_consolidated: int = 0
    merged_ids: list[str] = field(default_factory=list)
    merged: list[tuple[MergeGroup, Record]] = field(default_factory=list)
    failures: list[MergeFailure] = field(default_factory=list)
    stage: str = "scanning"


@dataclass
class MergePreview:
    group: MergeGroup
    preview_text: str
    estimated_quality: float


class _Unifier:
    """Feeds the combined text to a summarizer wrapped in the unify instructions."""

    def __init__(self, inner: Summarizer, count: int) -> None:
        self.inner = inner
        self.count = count

    @property
    def name(self) -> str:
        return self.inner.name

    async def is_available(self) -> bool:
        return await self.inner.is_available()

    async def summarize(self, text: str, max_length: int) -> str:
        prompt = UNIFY_PROMPT.format(count=self.count, text=text)
        return await self.inner.summarize(prompt, max_length)


class MergeCoordinator:
    """Detects merge groups over the active set and consolidates them."""

    def __init__(
        self,
        store: RecordStore,
        index: CacheIndex,
        summarizer: SummarizerChain,
        audit: AuditTrail,
        quality: QualityScorer,
        embedder: Embedder | None = None,
        file_overlap_threshold: float = FILE_OVERLAP_THRESHOLD,
        actor: str = "system",
    ) -> None:
        self.store = store
        self.index = index
        self.summarizer = summarizer
        self.audit = audit
        self.quality = quality
        self.embedder = embedder
        self.file_overlap_threshold = file_overlap_threshold
        self.actor = actor

    # ── Scanning ──────────────────────────────────────────────

    async def _vectors(self, records: list[Record]) -> dict[str, list[float]]:
        """One embedding per record per scan."""
        if self.embedder is None:
            return {}
        vectors = {}
        for record in records:
            vectors[record.id] = await self.embedder.embed(f"{record.summary}\n\n{record.body}")
        return vectors

    async def scan(
        self, records: list[Record], threshold: float = DEFAULT_MERGE_THRESHOLD
    ) -> list[CandidatePair]:
        """Pairwise candidate search over a point-in-time list.

        Yields to the event loop between rows, so a long scan can be cancelled.
        """
        vectors = await self._vectors(records)
        pairs: list[CandidatePair] = []
        for i, a in enumerate(records):
            for b in records[i + 1 :]:
                overlap = file_overlap(a.related_files, b.related_files)
                semantic = 0.0
                if a.id in vectors and b.id in vectors:
                    semantic = cosine_similarity(vectors[a.id], vectors[b.id])
                reason = merge_reason(overlap, semantic, threshold, self.file_overlap_threshold)
                if reason is None:
                    continue
                score = semantic if reason == REASON_VECTOR else overlap
                pairs.append(CandidatePair(score=score, reason=reason, ids=(a.id, b.id)))
                logger.debug(
                    "Merge candidate %s ~ %s (semantic=%.3f, overlap=%.3f, %s)",
                    a.id,
                    b.id,
                    semantic,
                    overlap,
                    reason,
                )
            await asyncio.sleep(0)
        return pairs

    # ── Grouping ──────────────────────────────────────────────

    def group(self, pairs: list[CandidatePair], records: list[Record]) -> list[MergeGroup]:
        """Union-find over ids: clusters sharing any id collapse into one group."""
        order = {r.id: n for n, r in enumerate(records)}
        by_id = {r.id: r for r in records}
        parent: dict[str, str] = {}

        def find(x: str) -> str:
            """Root of x, with path compression."""
            parent.setdefault(x, x)
            while parent[x] != x:
                parent[x] = parent[parent[x]]
                x = parent[x]
            return x

        def union(a: str, b: str) -> None:
            ra, rb = find(a), find(b)
            if ra == rb:
                return
            # lowest-ordered root wins, so output does not depend on pair order
            if order.get(ra, 0) <= order.get(rb, 0):
                parent[rb] = ra
            else:
                parent[ra] = rb

        for pair in pairs:
            union(*pair.ids)

        similarity: dict[str, float] = {}
        reasons: dict[str, set[str]] = {}
        for pair in pairs:
            root = find(pair.ids[0])
            similarity[root] = max(similarity.get(root, 0.0), pair.score)
            reasons.setdefault(root, set()).add(pair.reason)

        members: dict[str, list[Record]] = {}
        for record_id in sorted(parent, key=lambda i: order.get(i, len(order))):
            if record_id in by_id:
                members.setdefault(find(record_id), []).append(by_id[record_id])

        return [
            MergeGroup(
                members=group_members,
                similarity=similarity.get(root, 0.0),
                reasons=sorted(reasons.get(root, ())),
            )
            for root, group_members in members.items()
            if len(group_members) >= 2
        ]

    async def detect_groups(self, threshold: float = DEFAULT_MERGE_THRESHOLD) -> list[MergeGroup]:
        records = list(self.index.snapshot().records.values())
        logger.info("Detecting merge groups: %d records, threshold=%.2f", len(records), threshold)
        pairs = await self.scan(records, threshold)
        groups = self.group(pairs, records)
        logger.info("Detection completed: %d pairs, %d groups", len(pairs), len(groups))
        return groups

    # ── Consolidating / Archiving ─────────────────────────────

    async def merge(self, group: MergeGroup, actor: str | None = None) -> Record:
        """Consolidate one group into a new record and archive its sources.

        Raises Conflict (nothing written) for fewer than two members or for a
        member that is no longer active; MergeAborted once writes have begun.
        """
        actor = actor or self.actor
        if len(group.members) < 2:
            raise Conflict("At least 2 documents are required for merging")
        if len(set(group.ids)) != len(group.ids):
            raise Conflict("Merge group contains duplicate ids")

        sources = [self.store.get(doc_id) for doc_id in group.ids]
        for source in sources:
            if source.state is not RecordState.ACTIVE:
                raise Conflict(f"Document is not active: {source.id}")

        logger.info("Merging %d documents: %s", len(sources), ", ".join(group.ids))

        combined = "\n\n---\n\n".join(
            f"### Document {n}: {source.summary}\n\n{source.body.strip()}"
            for n, source in enumerate(sources, 1)
        )
        body = await self._unify(combined, len(sources))
        summary = f"Merged: {sources[0].summary}"
        lineage = MergeLineage(
            source_ids=[s.id for s in sources],
            method=MERGE_METHOD,
            timestamp=now_iso(),
            completed=False,
        )
        draft = RecordDraft(
            summary=summary,
            body=body,
            authors=unique([a for s in sources for a in s.authors]),
            tags=unique([t for s in sources for t in s.tags]),
            related_files=unique([f for s in sources for f in s.related_files]),
            prompt_hash=prompt_hash("Merged: " + ", ".join(s.summary for s in sources)),
            ultra_summary=await self.summarizer.summarize(body, 50),
            standard_summary=await self.summarizer.summarize(body, 200),
            embedding_model=sources[0].embedding_model,
            lineage=lineage,
        )

        stage = "consolidating"
        merged: Record | None = None
        try:
            merged = self.store.create(
                draft, actor=actor, reason=f"merged from {len(sources)} documents"
            )
            stage = "archiving"
            for source in sources:
                self.store.archive(source.id, actor=actor, reason=f"merged into {merged.id}")
                self.index.remove(source.id)
            stage = "finalizing"
            merged = self.store.update(
                merged.id,
                {"lineage": replace(lineage, completed=True)},
                actor=actor,
                reason="merge completed",
                action="merged",
            )
        except RecorderError as e:
            logger.error("Merge failed during %s: %s", stage, e)
            raise MergeAborted(stage, str(e), merged.id if merged else None) from e

        self.index.insert(merged)
        self.audit.log(
            "merge_documents",
            actor,
            {
                "merged_id": merged.id,
                "source_ids": lineage.source_ids,
                "method": MERGE_METHOD,
            },
            impact="high",
        )
        logger.info("Documents merged: %s <- %s", merged.id, ", ".join(lineage.source_ids))
        return merged

    async def _unify(self, combined: str, count: int) -> str:
        """Unified body from the summarizer, or the literal concatenation if it fails."""
        primary = self.summarizer.primary
        chain = SummarizerChain(
            _Unifier(primary, count) if primary is not None else None,
            LiteralSummarizer(),
            timeout=self.summarizer.timeout,
            probe_timeout=self.summarizer.probe_timeout,
        )
        return await chain.summarize(combined, UNIFY_MAX_LENGTH)

    # ── Full cycle ────────────────────────────────────────────

    async def run(
        self,
        threshold: float = DEFAULT_MERGE_THRESHOLD,
        auto_merge: bool = True,
        actor: str | None = None,
    ) -> MergeReport:
        report = MergeReport()
        report.groups = await self.detect_groups(threshold)
        if not report.groups:
            report.stage = "done"
            return report
        report.stage = "grouping"
        if not auto_merge:
            return report

        report.stage = "consolidating"
        for group in report.groups:
            try:
                merged = await self.merge(group, actor)
            except MergeAborted as e:
                report.failures.append(
                    MergeFailure(group.ids, e.stage, e.reason, merged_id=e.merged_id)
                )
                continue
            except RecorderError as e:
                logger.error("Merge of %s skipped: %s", ", ".join(group.ids), e)
                report.failures.append(MergeFailure(group.ids, "consolidating", str(e)))
                continue
            report.groups_processed += 1
            report.records_consolidated += len(group.members)
            report.merged_ids.append(merged.id)
            report.merged.append((group, merged))

        report.stage = "reindexing"
        self.index.rebuild(self.store.list_active())
        report.stage = "done"
        logger.info(
            "Merge run completed: %d groups, %d records consolidated, %d failures",
            report.groups_processed,
            report.records_consolidated,
            len(report.failures),
        )
        return report

    async def preview(self, threshold: float = DEFAULT_MERGE_THRESHOLD) -> list[MergePreview]:
        """What ``run`` would merge, without writing anything."""
        previews = []
        for group in await self.detect_groups(threshold):
            text = "\n\n".join(
                f"### Document {n}: {m.summary}\n{m.body[:PREVIEW_CHARS]}..."
                for n, m in enumerate(group.members, 1)
            )
            previews.append(
                MergePreview(
                    group=group,
                    preview_text=text,
                    estimated_quality=self.quality.estimate_merged(group.members),
                )
            )
        logger.info("Merge preview: %d groups (threshold=%.2f)", len(previews), threshold)
        return previews
