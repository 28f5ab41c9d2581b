"""Implementation-history records: file store + in-memory index.

Layout:
    .devrecorder/docs/
    ├── 2026-02-18_1a2b3c4d_add-jwt-auth.md    # Active records (frontmatter + body)
    ├── .archive/                               # Archived: merged away or aged out
    └── .audit/
        ├── audit.log                           # JSONL audit trail
        └── audit.2026-02-18T10-00-00.log       # Rotated archives

The markdown files are the source of truth. ``CacheIndex`` is a derived view
over the active records, replaced as a whole snapshot on every change.
"""

from devrecorder.records.index import CacheIndex, IndexSnapshot
from devrecorder.records.store import RecordStore
from devrecorder.records.types import (
    ChangeLogEntry,
    MergeLineage,
    QualityMarks,
    Record,
    RecordDraft,
    RecordState,
)

__all__ = [
    "CacheIndex",
    "ChangeLogEntry",
    "IndexSnapshot",
    "MergeLineage",
    "QualityMarks",
    "Record",
    "RecordDraft",
    "RecordState",
    "RecordStore",
]
