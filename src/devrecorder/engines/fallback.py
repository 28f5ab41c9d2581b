"""Pure, always-available adapters used when no backend answers."""

from __future__ import annotations

import hashlib
import math
import re

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class ExtractiveSummarizer:
    """First paragraph of the text, truncated with ``...``.

    Markdown heading lines are skipped so a body starting with
    ``## Overview`` yields its first real paragraph.
    """

    @property
    def name(self) -> str:
        return "extractive"

    async def is_available(self) -> bool:
        return True

    async def summarize(self, text: str, max_length: int) -> str:
        return extract_first_paragraph(text, max_length)


def extract_first_paragraph(text: str, max_length: int) -> str:
    for block in text.split("\n\n"):
        lines = [line for line in block.splitlines() if not line.lstrip().startswith("#")]
        paragraph = "\n".join(lines).strip()
        if paragraph:
            break
    else:
        return ""
    if len(paragraph) <= max_length:
        return paragraph
    return paragraph[: max(0, max_length - 3)] + "..."


class LiteralSummarizer:
    """Returns the text unchanged. Merges degrade to plain concatenation with it."""

    @property
    def name(self) -> str:
        return "literal"

    async def is_available(self) -> bool:
        return True

    async def summarize(self, text: str, max_length: int) -> str:
        return text


class HashingEmbedder:
    """Deterministic bag-of-words vector (feature hashing, L2-normalized)."""

    def __init__(self, dimensions: int = 256) -> None:
        self.dimensions = dimensions

    @property
    def name(self) -> str:
        return "hashing"

    async def is_available(self) -> bool:
        return True

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0:
            return vector
        return [x / norm for x in vector]
