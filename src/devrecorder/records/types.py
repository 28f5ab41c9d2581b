"""Record model and its frontmatter mapping.

A record is one markdown file: YAML frontmatter (metadata) followed by the
body. Loading is lenient (missing keys become empty values) so malformed
files still reach the integrity auditor instead of disappearing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import frontmatter

SCHEMA_VERSION = "1.0"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
MAX_TAGS = 10

# Frontmatter keys owned by the model; anything else is carried through untouched.
_KNOWN_KEYS = {
    "id",
    "created",
    "updated",
    "author",
    "authors",
    "tags",
    "prompt_hash",
    "related_files",
    "summary",
    "ultra_summary",
    "standard_summary",
    "embedding_model",
    "version",
    "merged_from",
    "merge_method",
    "merge_timestamp",
    "is_merged",
    "quality_score",
    "freshness_score",
    "completeness_score",
    "reference_count",
    "change_log",
}


# ── Timestamps ───────────────────────────────────────────────


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 value into an aware datetime. Returns None if invalid."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _timestamp_str(value: Any) -> str:
    """YAML may hand back datetime objects for unquoted timestamps."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _str_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None and str(v) != ""]
    return [str(value)]


def unique(items: list[str]) -> list[str]:
    """De-duplicate, keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


# ── Model ────────────────────────────────────────────────────


class RecordState(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


@dataclass
class ChangeLogEntry:
    """One append-only change-history entry."""

    timestamp: str
    action: str  # created | updated | archived | merged | repaired
    actor: str
    reason: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "action": self.action,
            "author": self.actor,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.details:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ChangeLogEntry:
        return cls(
            timestamp=_timestamp_str(data.get("timestamp")),
            action=str(data.get("action", "")),
            actor=str(data.get("author", data.get("actor", "unknown"))),
            reason=data.get("reason"),
            details=dict(data.get("details") or {}),
        )


@dataclass
class MergeLineage:
    """Where a merged record came from.

    ``completed`` stays False while the merge is still archiving its sources.
    """

    source_ids: list[str] = field(default_factory=list)
    method: str = "ai_unified"
    timestamp: str | None = None
    completed: bool = False

    @property
    def is_complete(self) -> bool:
        return self.completed and bool(self.timestamp) and len(self.source_ids) >= 2


@dataclass
class QualityMarks:
    """Cached output of the quality scorer."""

    freshness: float
    completeness: float
    reference_count: int
    total: float


@dataclass
class Record:
    """A persisted implementation-history document."""

    id: str
    created: str
    updated: str
    authors: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    prompt_hash: str = ""
    related_files: list[str] = field(default_factory=list)
    summary: str = ""
    ultra_summary: str = ""
    standard_summary: str = ""
    body: str = ""
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    version: str = SCHEMA_VERSION
    lineage: MergeLineage | None = None
    quality: QualityMarks | None = None
    reference_count: int = 0
    change_log: list[ChangeLogEntry] = field(default_factory=list)
    state: RecordState = RecordState.ACTIVE
    path: Path | None = None
    extra: dict = field(default_factory=dict)

    @property
    def date(self) -> str:
        """Creation date as YYYY-MM-DD."""
        return self.created.split("T")[0]

    @property
    def is_merged(self) -> bool:
        return self.lineage is not None

    @property
    def created_at(self) -> datetime | None:
        return parse_timestamp(self.created)

    # ── Frontmatter mapping ──────────────────────────────────

    def to_metadata(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "id": self.id,
            "created": self.created,
            "updated": self.updated,
            "author": self.authors[0] if len(self.authors) == 1 else list(self.authors),
            "tags": list(self.tags),
            "prompt_hash": self.prompt_hash,
            "related_files": list(self.related_files),
            "summary": self.summary,
            "ultra_summary": self.ultra_summary,
            "standard_summary": self.standard_summary,
            "embedding_model": self.embedding_model,
            "version": self.version,
        }
        if self.lineage is not None:
            meta["merged_from"] = list(self.lineage.source_ids)
            meta["merge_method"] = self.lineage.method
            if self.lineage.timestamp:
                meta["merge_timestamp"] = self.lineage.timestamp
            meta["is_merged"] = self.lineage.completed
        if self.quality is not None:
            meta["quality_score"] = round(self.quality.total, 2)
            meta["freshness_score"] = round(self.quality.freshness, 2)
            meta["completeness_score"] = round(self.quality.completeness, 2)
        if self.reference_count:
            meta["reference_count"] = self.reference_count
        if self.change_log:
            meta["change_log"] = [entry.to_dict() for entry in self.change_log]
        meta.update(self.extra)
        return meta

    def to_markdown(self) -> str:
        post = frontmatter.Post(self.body, **self.to_metadata())
        return frontmatter.dumps(post, sort_keys=False) + "\n"

    @classmethod
    def from_post(
        cls,
        post: frontmatter.Post,
        path: Path | None = None,
        state: RecordState = RecordState.ACTIVE,
    ) -> Record:
        meta = dict(post.metadata)

        lineage = None
        if any(key in meta for key in ("merged_from", "merge_timestamp", "is_merged")):
            merge_ts = meta.get("merge_timestamp")
            lineage = MergeLineage(
                source_ids=_str_list(meta.get("merged_from")),
                method=str(meta.get("merge_method") or "ai_unified"),
                timestamp=_timestamp_str(merge_ts) if merge_ts else None,
                completed=bool(meta.get("is_merged", False)),
            )

        quality = None
        if "quality_score" in meta:
            try:
                quality = QualityMarks(
                    freshness=float(meta.get("freshness_score", 0)),
                    completeness=float(meta.get("completeness_score", 0)),
                    reference_count=int(meta.get("reference_count", 0) or 0),
                    total=float(meta.get("quality_score", 0)),
                )
            except (TypeError, ValueError):
                quality = None

        raw_log = meta.get("change_log") or []
        change_log = [
            ChangeLogEntry.from_dict(entry) for entry in raw_log if isinstance(entry, dict)
        ]

        try:
            reference_count = int(meta.get("reference_count", 0) or 0)
        except (TypeError, ValueError):
            reference_count = 0

        return cls(
            id=str(meta.get("id") or ""),
            created=_timestamp_str(meta.get("created")),
            updated=_timestamp_str(meta.get("updated")),
            authors=_str_list(meta.get("author", meta.get("authors"))),
            tags=unique(_str_list(meta.get("tags"))),
            prompt_hash=str(meta.get("prompt_hash") or ""),
            related_files=_str_list(meta.get("related_files")),
            summary=str(meta.get("summary") or ""),
            ultra_summary=str(meta.get("ultra_summary") or ""),
            standard_summary=str(meta.get("standard_summary") or ""),
            body=post.content,
            embedding_model=str(meta.get("embedding_model") or DEFAULT_EMBEDDING_MODEL),
            version=str(meta.get("version") or SCHEMA_VERSION),
            lineage=lineage,
            quality=quality,
            reference_count=reference_count,
            change_log=change_log,
            state=state,
            path=path,
            extra={k: v for k, v in meta.items() if k not in _KNOWN_KEYS},
        )


@dataclass
class RecordDraft:
    """Caller-supplied fields for a new record. Ids and timestamps are assigned by the store."""

    summary: str
    body: str
    authors: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    prompt_hash: str = ""
    related_files: list[str] = field(default_factory=list)
    ultra_summary: str = ""
    standard_summary: str = ""
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    lineage: MergeLineage | None = None
