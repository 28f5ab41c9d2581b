"""Derive record metadata (tags, prompt hash, body) from a recording request."""

from __future__ import annotations

import hashlib
import logging
import re
from collections import Counter
from pathlib import Path

from devrecorder.records.types import MAX_TAGS, unique

logger = logging.getLogger(__name__)

FILE_PREVIEW_CHARS = 500

_STOP_WORDS = {
    "the", "and", "for", "with", "that", "this", "from", "into", "add", "added",
    "implement", "implemented", "create", "created", "fix", "fixed", "update", "updated",
    "を", "の", "に", "は", "が", "で", "と", "から", "まで", "実装", "作成", "追加", "する", "した",
}


def prompt_hash(prompt: str) -> str:
    """Content hash of the originating request, used for exact-duplicate detection."""
    return "sha256:" + hashlib.sha256(prompt.encode("utf-8")).hexdigest()


def extract_keywords(text: str, limit: int = 5) -> list[str]:
    """Most frequent words longer than two characters, stop words removed."""
    words = [
        w for w in text.lower().split() if len(w) > 2 and w not in _STOP_WORDS
    ]
    counts = Counter(words)
    # Counter.most_common keeps first-seen order among equal counts
    return [word for word, _ in counts.most_common(limit)]


def generate_tags(prompt: str, files: list[str]) -> list[str]:
    """Keywords from the prompt plus directory and base names from file paths (max 10)."""
    tags = extract_keywords(prompt)
    for file in files:
        parts = file.replace("\\", "/").split("/")
        # src/auth/login.py -> "auth"
        if len(parts) > 1 and parts[1]:
            tags.append(parts[1])
        base = parts[-1].split(".")[0]
        if base:
            tags.append(base)
    return unique(tags)[:MAX_TAGS]


def build_body(files: list[str], prompt: str, root: Path | None = None) -> str:
    """Markdown body: overview, per-file previews, changed-file list."""
    lines = ["## Overview", "", prompt, "", "## Details", ""]
    for file in files:
        path = Path(file)
        if root is not None and not path.is_absolute():
            path = root / path
        try:
            preview = path.read_text(encoding="utf-8")[:FILE_PREVIEW_CHARS]
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to read %s for preview: %s", file, e)
            continue
        lines += [f"### {file}", "", "```", preview, "...", "```", ""]
    lines += ["## Changed files", ""]
    lines += [f"- `{file}`" for file in files]
    return "\n".join(lines) + "\n"


def slugify(text: str, max_length: int = 30) -> str:
    """Lowercase ASCII slug used in record file names."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())[:max_length].strip("-")
    return slug or "record"
