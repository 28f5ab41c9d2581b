"""Record store: one markdown file per record, the source of truth.

Layout:
    <docs_dir>/
    ├── 2026-02-18_1a2b3c4d_add-jwt-auth.md    # Active records
    ├── .archive/                               # Archived records (retrievable by id)
    └── .audit/                                 # Audit trail (see devrecorder.audit)

Every write goes to a temp file in the target directory and is moved into
place with ``os.replace``, so a failed write leaves the previous file intact.
Mutations of one id are serialized by a per-id lock.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import frontmatter

from devrecorder.errors import Conflict, NotFound, StorageError, ValidationError
from devrecorder.records.metadata import slugify
from devrecorder.records.types import (
    ChangeLogEntry,
    Record,
    RecordDraft,
    RecordState,
    now_iso,
    parse_timestamp,
    unique,
)

logger = logging.getLogger(__name__)

ARCHIVE_DIR = ".archive"

# Record attributes update() refuses to touch.
_IMMUTABLE_FIELDS = {"id", "change_log", "state", "path"}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class RecordStore:
    """Create/read/update/archive/delete access to the record files."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.archive_dir = root / ARCHIVE_DIR
        self._paths: dict[str, Path] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._ensure_initialized()
        self._build_path_map()

    # ── Initialization ────────────────────────────────────────

    def _ensure_initialized(self) -> None:
        """Ensure base directories exist. Idempotent."""
        self.root.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(exist_ok=True)

    def _build_path_map(self) -> None:
        """Scan both directories once, map id -> file."""
        self._paths.clear()
        for record in self.scan():
            if not record.id:
                continue
            if record.id in self._paths:
                logger.warning(
                    "Duplicate record id %s in %s (keeping %s)",
                    record.id,
                    record.path,
                    self._paths[record.id],
                )
                continue
            self._paths[record.id] = record.path
        logger.debug("Record store loaded %d ids from %s", len(self._paths), self.root)

    def _lock(self, doc_id: str) -> threading.Lock:
        with self._locks_guard:
            if doc_id not in self._locks:
                self._locks[doc_id] = threading.Lock()
            return self._locks[doc_id]

    # ── File I/O ──────────────────────────────────────────────

    def _load(self, path: Path, state: RecordState) -> Record | None:
        """Parse one record file. Unreadable files are logged and skipped."""
        try:
            post = frontmatter.load(str(path))
        except Exception as e:
            logger.warning("Failed to parse record file %s: %s", path, e)
            return None
        return Record.from_post(post, path=path, state=state)

    def _load_dir(self, directory: Path, state: RecordState) -> list[Record]:
        if not directory.is_dir():
            return []
        records = []
        for path in sorted(directory.glob("*.md")):
            record = self._load(path, state)
            if record is not None:
                records.append(record)
        return records

    def _write(self, path: Path, record: Record) -> None:
        """Atomically replace ``path`` with the rendered record."""
        text = record.to_markdown()
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=".",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(text)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {e}") from e

    def _state_for(self, path: Path) -> RecordState:
        return RecordState.ARCHIVED if path.parent == self.archive_dir else RecordState.ACTIVE

    def _read(self, doc_id: str) -> Record:
        path = self._paths.get(doc_id)
        if path is None or not path.exists():
            # Files may have been added or moved behind our back
            self._build_path_map()
            path = self._paths.get(doc_id)
            if path is None:
                raise NotFound(doc_id)
        record = self._load(path, self._state_for(path))
        if record is None or record.id != doc_id:
            raise NotFound(doc_id, f"Document file is unreadable: {doc_id}")
        return record

    def _new_path(self, record: Record, directory: Path) -> Path:
        """Format: YYYY-MM-DD_<uuid prefix>_<summary slug>.md"""
        stem = f"{record.date}_{record.id.split('-')[0]}_{slugify(record.summary)}"
        return self._unique_path(directory / f"{stem}.md")

    @staticmethod
    def _unique_path(path: Path) -> Path:
        candidate = path
        counter = 2
        while candidate.exists():
            candidate = path.with_name(f"{path.stem}-{counter}{path.suffix}")
            counter += 1
        return candidate

    @staticmethod
    def _seed_change_log(record: Record, actor: str, reason: str | None = None) -> None:
        """History always opens with ``created``, stamped at the record's creation time."""
        if record.change_log:
            return
        ts = record.created if parse_timestamp(record.created) else now_iso()
        record.change_log.append(
            ChangeLogEntry(timestamp=ts, action="created", actor=actor, reason=reason)
        )

    @staticmethod
    def _next_timestamp(record: Record) -> str:
        """Now, but never earlier than the last change-log entry."""
        ts = now_iso()
        if record.change_log:
            last = parse_timestamp(record.change_log[-1].timestamp)
            current = parse_timestamp(ts)
            if last and current and last > current:
                return record.change_log[-1].timestamp
        return ts

    # ── Reads ─────────────────────────────────────────────────

    def scan(self) -> list[Record]:
        """Re-read every record file from disk, active then archived."""
        return self._load_dir(self.root, RecordState.ACTIVE) + self._load_dir(
            self.archive_dir, RecordState.ARCHIVED
        )

    def get(self, doc_id: str) -> Record:
        """Return an Active or Archived record. Raises NotFound."""
        return self._read(doc_id)

    def exists(self, doc_id: str) -> bool:
        path = self._paths.get(doc_id)
        return path is not None and path.exists()

    def list_active(self) -> list[Record]:
        return [r for r in self._load_dir(self.root, RecordState.ACTIVE) if r.id]

    def list_archived(self) -> list[Record]:
        return [r for r in self._load_dir(self.archive_dir, RecordState.ARCHIVED) if r.id]

    def list_all(self) -> list[Record]:
        return self.list_active() + self.list_archived()

    def query(
        self,
        keyword: str | None = None,
        tags: Iterable[str] | None = None,
        include_archived: bool = False,
    ) -> list[Record]:
        """Keyword (summary + body, case-insensitive) and tag filter, newest first."""
        records = self.list_all() if include_archived else self.list_active()
        wanted_tags = set(tags or [])
        results = []
        for record in records:
            if keyword:
                needle = keyword.lower()
                if needle not in record.summary.lower() and needle not in record.body.lower():
                    continue
            if wanted_tags and not wanted_tags & set(record.tags):
                continue
            results.append(record)
        results.sort(key=lambda r: r.created_at or _EPOCH, reverse=True)
        return results

    # ── Writes ────────────────────────────────────────────────

    def create(self, draft: RecordDraft, actor: str, reason: str | None = None) -> Record:
        """Assign id and timestamps, start the change log, write the file."""
        doc_id = str(uuid.uuid4())
        ts = now_iso()
        record = Record(
            id=doc_id,
            created=ts,
            updated=ts,
            authors=unique(draft.authors) or [actor],
            tags=unique(draft.tags),
            prompt_hash=draft.prompt_hash,
            related_files=unique(draft.related_files),
            summary=draft.summary,
            ultra_summary=draft.ultra_summary,
            standard_summary=draft.standard_summary,
            body=draft.body,
            embedding_model=draft.embedding_model,
            lineage=draft.lineage,
            change_log=[ChangeLogEntry(timestamp=ts, action="created", actor=actor, reason=reason)],
        )
        with self._lock(doc_id):
            path = self._new_path(record, self.root)
            self._write(path, record)
            record.path = path
            self._paths[doc_id] = path
        logger.info("Record created: %s (%s)", doc_id, path.name)
        return record

    def update(
        self,
        doc_id: str,
        patch: Mapping[str, Any],
        actor: str,
        reason: str | None = None,
        action: str = "updated",
    ) -> Record:
        """Apply ``patch`` (Record attribute -> value), bump ``updated``, log the change."""
        for key in patch:
            if key in _IMMUTABLE_FIELDS or key not in Record.__dataclass_fields__:
                raise ValidationError(key, "field cannot be updated")
        with self._lock(doc_id):
            record = self._read(doc_id)
            for key, value in patch.items():
                setattr(record, key, value)
            self._seed_change_log(record, actor)
            ts = self._next_timestamp(record)
            record.updated = ts
            record.change_log.append(
                ChangeLogEntry(
                    timestamp=ts,
                    action=action,
                    actor=actor,
                    reason=reason,
                    details={"fields": sorted(patch)} if patch else {},
                )
            )
            self._write(record.path, record)
        logger.info("Record %s: %s (%s)", action, doc_id, ", ".join(sorted(patch)) or "-")
        return record

    def ensure_change_log(self, doc_id: str, actor: str, reason: str) -> Record:
        """Give a record without history a minimal one: a single ``created`` entry."""
        with self._lock(doc_id):
            record = self._read(doc_id)
            if record.change_log:
                return record
            self._seed_change_log(record, actor, reason)
            self._write(record.path, record)
        logger.info("Change log initialized: %s", doc_id)
        return record

    def archive(self, doc_id: str, actor: str, reason: str | None = None) -> Record:
        """Move an active record to .archive/. It stays retrievable by id."""
        with self._lock(doc_id):
            record = self._read(doc_id)
            if record.state is RecordState.ARCHIVED:
                raise Conflict(f"Document already archived: {doc_id}")
            source = record.path
            self._seed_change_log(record, actor)
            ts = self._next_timestamp(record)
            record.updated = ts
            record.change_log.append(
                ChangeLogEntry(timestamp=ts, action="archived", actor=actor, reason=reason)
            )
            dest = self._unique_path(self.archive_dir / source.name)
            self._write(dest, record)
            try:
                source.unlink()
            except FileNotFoundError:
                dest.unlink(missing_ok=True)
                raise Conflict(f"Document was removed concurrently: {doc_id}")
            except OSError as e:
                dest.unlink(missing_ok=True)
                raise StorageError(f"Failed to archive {doc_id}: {e}") from e
            record.path = dest
            record.state = RecordState.ARCHIVED
            self._paths[doc_id] = dest
        logger.info("Record archived: %s -> %s", doc_id, dest)
        return record

    def delete(self, doc_id: str, actor: str) -> None:
        """Remove a record for good. No tombstone is kept."""
        with self._lock(doc_id):
            record = self._read(doc_id)
            try:
                record.path.unlink()
            except FileNotFoundError:
                raise Conflict(f"Document was removed concurrently: {doc_id}")
            except OSError as e:
                raise StorageError(f"Failed to delete {doc_id}: {e}") from e
            self._paths.pop(doc_id, None)
        logger.info("Record deleted by %s: %s", actor, doc_id)

    def archive_older_than(self, days: int, actor: str) -> list[str]:
        """Archive active records created more than ``days`` ago. Returns their ids."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        archived = []
        for record in self.list_active():
            created = record.created_at
            if created is None or created >= cutoff:
                continue
            try:
                self.archive(record.id, actor=actor, reason=f"older than {days} days")
            except (NotFound, Conflict) as e:
                logger.warning("Auto-archive skipped %s: %s", record.id, e)
                continue
            archived.append(record.id)
        if archived:
            logger.info("Auto-archived %d records older than %d days", len(archived), days)
        return archived
