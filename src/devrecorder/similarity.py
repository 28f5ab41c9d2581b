"""Similarity scoring between records.

Two separate decisions use these measures:

- **Near-duplicate warning** (at record creation): the composite score
  ``0.6·file_overlap + 0.2·tag_jaccard + 0.2·keyword_jaccard`` against a
  high threshold (0.9 by default).
- **Merge candidates** (merge scans): a pair qualifies when an external
  semantic score reaches the merge threshold, or when the related files
  overlap by at least one half. The composite score plays no part here.

Every measure is 0.0 when either side is empty.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from devrecorder.records.types import Record

FILE_WEIGHT = 0.6
TAG_WEIGHT = 0.2
KEYWORD_WEIGHT = 0.2

DEFAULT_MERGE_THRESHOLD = 0.85
FILE_OVERLAP_THRESHOLD = 0.5
NEAR_DUPLICATE_THRESHOLD = 0.9

REASON_VECTOR = "vector_similarity"
REASON_FILES = "file_overlap"


# ---------------------------------------------------------------------------
# Set measures
# ---------------------------------------------------------------------------


def _jaccard(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def file_overlap(a: Iterable[str], b: Iterable[str]) -> float:
    """|A ∩ B| / max(|A|, |B|) over related-file sets."""
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / max(len(set_a), len(set_b))


def tag_jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    return _jaccard(set(a), set(b))


def keywords(text: str) -> set[str]:
    """Lower-cased whitespace tokens."""
    return set(text.lower().split())


def keyword_jaccard(a: str, b: str) -> float:
    """Jaccard over the lower-cased words of two summaries."""
    return _jaccard(keywords(a), keywords(b))


def composite_score(a: Record, b: Record) -> float:
    """Weighted near-duplicate score in [0, 1]."""
    return (
        FILE_WEIGHT * file_overlap(a.related_files, b.related_files)
        + TAG_WEIGHT * tag_jaccard(a.tags, b.tags)
        + KEYWORD_WEIGHT * keyword_jaccard(a.summary, b.summary)
    )


# ---------------------------------------------------------------------------
# Vectors
# ---------------------------------------------------------------------------


def cosine_similarity(u: Sequence[float], v: Sequence[float]) -> float:
    """Cosine of two equal-length vectors, clamped to [0, 1]."""
    if not u or not v or len(u) != len(v):
        return 0.0
    dot = sum(x * y for x, y in zip(u, v))
    norm = math.sqrt(sum(x * x for x in u)) * math.sqrt(sum(y * y for y in v))
    if norm == 0:
        return 0.0
    return max(0.0, min(1.0, dot / norm))


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


def merge_reason(
    overlap: float,
    semantic: float,
    threshold: float = DEFAULT_MERGE_THRESHOLD,
    overlap_threshold: float = FILE_OVERLAP_THRESHOLD,
) -> str | None:
    """Merge-candidate predicate. Returns the reason, or None if not a candidate."""
    if semantic >= threshold:
        return REASON_VECTOR
    if overlap >= overlap_threshold:
        return REASON_FILES
    return None


def find_near_duplicates(
    record: Record,
    candidates: Iterable[Record],
    threshold: float = NEAR_DUPLICATE_THRESHOLD,
) -> list[tuple[Record, float]]:
    """Records whose composite score with ``record`` reaches ``threshold``, best first."""
    hits = []
    for other in candidates:
        if other.id == record.id:
            continue
        score = composite_score(record, other)
        if score >= threshold:
            hits.append((other, score))
    hits.sort(key=lambda pair: pair[1], reverse=True)
    return hits


def find_exact_duplicates(record: Record, candidates: Iterable[Record]) -> list[Record]:
    """Other records created from the very same request (same prompt hash)."""
    if not record.prompt_hash:
        return []
    return [
        other
        for other in candidates
        if other.id != record.id and other.prompt_hash == record.prompt_hash
    ]
