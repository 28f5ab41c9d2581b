"""Tests for the Recorder hub and the tool boundary."""

from __future__ import annotations

from pathlib import Path

import pytest

from devrecorder.config import DocumentConfig, RecorderConfig, SummarizerConfig
from devrecorder.core import Recorder
from devrecorder.errors import NotFound, ValidationError
from devrecorder.tools.record_tools import _normalize_args, get_record_tools, invoke

FILES = ["src/auth.py", "src/login.py"]


@pytest.fixture
def config(tmp_path: Path) -> RecorderConfig:
    return RecorderConfig(
        summarizer=SummarizerConfig(provider="extractive"),
        documents=DocumentConfig(docs_dir=tmp_path / "docs", author="alice"),
    )


@pytest.fixture
def recorder(config: RecorderConfig) -> Recorder:
    return Recorder(config)


class TestRecord:
    @pytest.mark.asyncio
    async def test_creates_record(self, recorder: Recorder):
        text = await recorder.record(FILES, "Add JWT auth to the login endpoint")
        assert text.startswith("Implementation document created:")
        assert "src/auth.py, src/login.py" in text

        [record] = recorder.store.list_active()
        assert record.id in text
        assert record.summary == "Add JWT auth to the login endpoint"
        assert record.authors == ["alice"]
        assert "auth" in record.tags
        assert record.id in recorder.index
        assert recorder.audit.search(action="document_created")

    @pytest.mark.asyncio
    async def test_explicit_summary(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth", summary="JWT login")
        assert recorder.store.list_active()[0].summary == "JWT login"

    @pytest.mark.asyncio
    async def test_warns_about_duplicates(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        text = await recorder.record(FILES, "Add JWT auth")
        assert "Same request already recorded" in text
        assert "Similar documents detected" in text
        assert "Similarity: 100%" in text

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected(self, recorder: Recorder):
        with pytest.raises(ValidationError):
            await recorder.record(FILES, "   ")
        assert recorder.store.list_active() == []


class TestSearch:
    @pytest.mark.asyncio
    async def test_empty_store(self, recorder: Recorder):
        text = await recorder.search("auth")
        assert "## Recent implementations" in text
        assert "None" in text
        assert "No related implementations found." in text

    @pytest.mark.asyncio
    async def test_finds_related(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        await recorder.record(["src/theme.css"], "Dark mode")
        text = await recorder.search("jwt")
        assert "### 1. Add JWT auth" in text
        assert "Dark mode" in text.split("## Related past implementations")[0]

    @pytest.mark.asyncio
    async def test_zero_max_results_is_respected(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        text = await recorder.search("jwt", max_results=0)
        assert "No related implementations found." in text
        assert "### 1." not in text

    @pytest.mark.asyncio
    async def test_by_keyword(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        assert "Add JWT auth" in await recorder.search_by_keyword("jwt")
        assert await recorder.search_by_keyword("kubernetes") == "No results found."


class TestManage:
    @pytest.mark.asyncio
    async def test_archive(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        doc_id = recorder.store.list_active()[0].id
        assert await recorder.manage("archive", doc_id) == f"Document archived: {doc_id}"
        assert doc_id not in recorder.index
        assert recorder.store.list_archived()[0].id == doc_id

    @pytest.mark.asyncio
    async def test_delete(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        doc_id = recorder.store.list_active()[0].id
        assert await recorder.manage("delete", doc_id) == f"Document deleted: {doc_id}"
        assert recorder.store.list_all() == []
        assert recorder.audit.search(action="document_deleted")[0].impact == "high"

    @pytest.mark.asyncio
    async def test_unknown_action(self, recorder: Recorder):
        with pytest.raises(ValidationError):
            await recorder.manage("purge", "x")

    @pytest.mark.asyncio
    async def test_unknown_id(self, recorder: Recorder):
        with pytest.raises(NotFound):
            await recorder.manage("archive", "missing")


class TestHistoryAndRollback:
    @pytest.mark.asyncio
    async def test_history(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        doc_id = recorder.store.list_active()[0].id
        await recorder.manage("archive", doc_id)
        text = await recorder.history(doc_id)
        assert "# Document history" in text
        assert "- created" in text
        assert "- archived" in text
        assert "**State:** archived" in text

    @pytest.mark.asyncio
    async def test_history_not_found(self, recorder: Recorder):
        assert await recorder.history("missing") == "Document not found: missing"

    @pytest.mark.asyncio
    async def test_rollback_not_supported(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        await recorder.record(FILES, "Add refresh tokens")
        sources = sorted(r.id for r in recorder.store.list_active())
        await recorder.merge_run()
        [merged] = recorder.index.records()
        text = await recorder.rollback(merged.id)
        assert text.startswith("Rollback is not yet supported.")
        assert sorted(text.split("Merged from: ")[1].split(", ")) == sources

    @pytest.mark.asyncio
    async def test_rollback_plain_record(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        doc_id = recorder.store.list_active()[0].id
        assert await recorder.rollback(doc_id) == f"Not a merged document: {doc_id}"


class TestMergeQualityIntegrity:
    @pytest.mark.asyncio
    async def test_merge_run(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        await recorder.record(FILES, "Add refresh tokens")
        text = await recorder.merge_run()
        assert "Merge group 1:" in text
        assert "Total: 2 documents merged into 1." in text
        assert len(recorder.store.list_active()) == 1
        assert len(recorder.store.list_archived()) == 2

    @pytest.mark.asyncio
    async def test_merge_nothing(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        assert await recorder.merge_run() == "No similar documents found that can be merged."

    @pytest.mark.asyncio
    async def test_preview(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        await recorder.record(FILES, "Add refresh tokens")
        text = await recorder.merge_preview()
        assert "## Merge group 1" in text
        assert "- Reason: file_overlap" in text
        assert len(recorder.store.list_active()) == 2

    @pytest.mark.asyncio
    async def test_quality_check(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        await recorder.record(FILES, "Add refresh tokens")
        text = await recorder.quality_check()
        assert "# Document quality report" in text
        assert "- Total documents: 2" in text
        assert "Contradiction detected" in text

    @pytest.mark.asyncio
    async def test_quality_fix(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        text = await recorder.quality_check(fix=True)
        assert "- Scores stored: 1" in text
        assert recorder.store.list_active()[0].quality is not None

    @pytest.mark.asyncio
    async def test_integrity_clean(self, recorder: Recorder):
        await recorder.record(FILES, "Add JWT auth")
        text = await recorder.integrity_check()
        assert "- Issues: 0" in text
        assert "- Severity: low" in text

    @pytest.mark.asyncio
    async def test_integrity_recover(self, recorder: Recorder):
        (recorder.store.root / "plain.md").write_text(
            "---\nid: 3f1c2b4a-5d6e-4f70-8a9b-0c1d2e3f4a5b\n"
            "created: '2026-01-01T00:00:00+00:00'\nupdated: '2026-01-01T00:00:00+00:00'\n"
            "author: bob\nsummary: Hand written\n---\n\nbody\n",
            encoding="utf-8",
        )
        text = await recorder.integrity_check(recover=True)
        assert "[file_memory_mismatch] MissingChangeLog" in text
        assert "Recovered 2 of 2 issues." in text


class TestTools:
    def test_tool_names(self, recorder: Recorder):
        assert set(get_record_tools(recorder)) == {
            "search_related_docs",
            "record_implementation",
            "manage_documents",
            "search_by_keyword",
            "merge_similar_docs",
            "preview_merge",
            "check_document_quality",
            "get_document_history",
            "rollback_merge",
            "check_integrity",
        }

    def test_normalize_args(self):
        assert _normalize_args({"maxResults": 2, "docId": "x", "mergedDocId": "m"}) == {
            "max_results": 2,
            "doc_id": "x",
            "merged_id": "m",
        }

    @pytest.mark.asyncio
    async def test_invoke_with_camel_case(self, recorder: Recorder):
        await invoke(recorder, "record_implementation", {"files": FILES, "prompt": "Add JWT auth"})
        text = await invoke(recorder, "search_related_docs", {"prompt": "jwt", "maxResults": 1})
        assert "### 1. Add JWT auth" in text

    @pytest.mark.asyncio
    async def test_invoke_rollback_alias(self, recorder: Recorder):
        text = await invoke(recorder, "rollback_merge", {"mergedDocId": "missing"})
        assert text == "Document not found: missing"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, recorder: Recorder):
        with pytest.raises(ValidationError):
            await invoke(recorder, "drop_tables", {})

    @pytest.mark.asyncio
    async def test_bad_arguments(self, recorder: Recorder):
        with pytest.raises(ValidationError):
            await invoke(recorder, "manage_documents", {"action": "archive"})
        with pytest.raises(ValidationError):
            await invoke(recorder, "check_integrity", {"recover": True, "force": True})
