"""Tools for recording and curating implementation history.

These functions are designed to be exposed as tools to an AI agent (any
transport that maps ``name(args) -> text``), or called directly.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from devrecorder.errors import ValidationError

if TYPE_CHECKING:
    from devrecorder.core import Recorder

Tool = Callable[..., Awaitable[str]]

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

# Tool argument names that differ from the Recorder parameter names
_ARG_ALIASES = {"merged_doc_id": "merged_id"}


def get_record_tools(recorder: Recorder) -> dict[str, Tool]:
    """Return a dict of tool_name -> async callable for record operations."""

    async def search_related_docs(
        prompt: str, max_results: int = 3, threshold: float | None = None
    ) -> str:
        """Show recent implementations and past ones related to a prompt."""
        return await recorder.search(prompt, max_results=max_results, threshold=threshold)

    async def record_implementation(
        files: list[str], prompt: str, summary: str | None = None
    ) -> str:
        """Record an implementation. Warns when a very similar record already exists."""
        return await recorder.record(files, prompt, summary=summary)

    async def manage_documents(action: str, doc_id: str) -> str:
        """Archive or delete a document (action: archive | delete)."""
        return await recorder.manage(action, doc_id)

    async def search_by_keyword(keyword: str, tags: list[str] | None = None) -> str:
        """Search summaries and bodies for a keyword, optionally filtered by tags."""
        return await recorder.search_by_keyword(keyword, tags=tags)

    async def merge_similar_docs(threshold: float = 0.85, auto_merge: bool = True) -> str:
        """Detect similar documents and merge them (sources are archived, not deleted)."""
        return await recorder.merge_run(threshold=threshold, auto_merge=auto_merge)

    async def preview_merge(threshold: float = 0.85) -> str:
        """Show which documents a merge would combine, without changing anything."""
        return await recorder.merge_preview(threshold=threshold)

    async def check_document_quality(fix: bool = False) -> str:
        """Quality report: stale, incomplete and overlapping documents."""
        return await recorder.quality_check(fix=fix)

    async def get_document_history(doc_id: str) -> str:
        """Change history of a document."""
        return await recorder.history(doc_id)

    async def rollback_merge(merged_id: str) -> str:
        """Undo a merge. Not supported yet; lists the merge sources."""
        return await recorder.rollback(merged_id)

    async def check_integrity(recover: bool = False) -> str:
        """Validate every record and optionally repair what can be repaired."""
        return await recorder.integrity_check(recover=recover)

    return {
        "search_related_docs": search_related_docs,
        "record_implementation": record_implementation,
        "manage_documents": manage_documents,
        "search_by_keyword": search_by_keyword,
        "merge_similar_docs": merge_similar_docs,
        "preview_merge": preview_merge,
        "check_document_quality": check_document_quality,
        "get_document_history": get_document_history,
        "rollback_merge": rollback_merge,
        "check_integrity": check_integrity,
    }


def _normalize_args(args: dict[str, Any]) -> dict[str, Any]:
    """Accept both ``maxResults`` and ``max_results`` style keys."""
    normalized = {}
    for key, value in args.items():
        name = _CAMEL_RE.sub("_", key).lower()
        normalized[_ARG_ALIASES.get(name, name)] = value
    return normalized


async def invoke(recorder: Recorder, name: str, args: dict[str, Any] | None = None) -> str:
    """Dispatch one tool call by name."""
    tools = get_record_tools(recorder)
    tool = tools.get(name)
    if tool is None:
        raise ValidationError("name", f"unknown tool {name!r}. Available: {', '.join(tools)}")
    kwargs = _normalize_args(args or {})
    try:
        inspect.signature(tool).bind(**kwargs)
    except TypeError as e:
        raise ValidationError("args", f"{name}: {e}") from e
    return await tool(**kwargs)
