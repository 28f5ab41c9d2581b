"""Tests for the JSONL audit trail."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path

import pytest

from devrecorder.audit import AuditTrail
from devrecorder.errors import ValidationError


@pytest.fixture
def trail(tmp_path: Path) -> AuditTrail:
    return AuditTrail(tmp_path / ".audit" / "audit.log")


class TestLog:
    def test_appends_one_json_line(self, trail: AuditTrail):
        trail.log("document_created", "alice", {"doc_id": "d1"}, impact="low")
        trail.log("document_archived", "bob", {"doc_id": "d1"}, impact="medium")
        lines = trail.log_path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["action"] == "document_created"
        assert first["actor"] == "alice"
        assert first["details"] == {"doc_id": "d1"}
        assert first["impact"] == "low"
        assert "timestamp" in first

    def test_rejects_unknown_impact(self, trail: AuditTrail):
        with pytest.raises(ValidationError):
            trail.log("x", impact="catastrophic")

    def test_write_failure_does_not_raise(self, trail: AuditTrail):
        trail.log_path.mkdir()  # a directory cannot be opened for append
        event = trail.log("document_created", "alice")
        assert event.action == "document_created"


class TestSearch:
    def test_missing_log_is_empty(self, trail: AuditTrail):
        assert trail.search() == []

    def test_filters(self, trail: AuditTrail):
        trail.log("document_created", "alice")
        trail.log("document_deleted", "alice", impact="high")
        trail.log("document_created", "bob")
        assert len(trail.search()) == 3
        assert [e.actor for e in trail.search(action="document_created")] == ["alice", "bob"]
        assert [e.action for e in trail.search(actor="alice")] == [
            "document_created",
            "document_deleted",
        ]

    def test_time_range(self, trail: AuditTrail):
        trail.log_path.write_text(
            "\n".join(
                json.dumps({"timestamp": ts, "action": "a", "actor": "x", "details": {},
                            "impact": "low"})
                for ts in ("2026-01-01T00:00:00+00:00", "2026-02-01T00:00:00+00:00",
                           "2026-03-01T00:00:00+00:00")
            )
            + "\n",
            encoding="utf-8",
        )
        events = trail.search(start="2026-01-15T00:00:00Z", end="2026-02-15T00:00:00Z")
        assert [e.timestamp for e in events] == ["2026-02-01T00:00:00+00:00"]

    def test_skips_corrupt_lines(self, trail: AuditTrail):
        trail.log("document_created", "alice")
        with trail.log_path.open("a", encoding="utf-8") as f:
            f.write("{not json\n")
        trail.log("document_deleted", "alice")
        assert [e.action for e in trail.search()] == ["document_created", "document_deleted"]


class TestRotation:
    def test_rotates_past_max_bytes(self, tmp_path: Path):
        trail = AuditTrail(tmp_path / "audit.log", max_bytes=200)
        for n in range(5):
            trail.log("document_created", "alice", {"n": n, "pad": "x" * 100})
        archives = list(tmp_path.glob("audit.*.log"))
        assert archives
        assert all(p.name.startswith("audit.") for p in archives)

    def test_search_reads_live_log_only(self, tmp_path: Path):
        trail = AuditTrail(tmp_path / "audit.log", max_bytes=50)
        trail.log("first", "alice", {"pad": "x" * 100})
        assert not trail.log_path.exists()
        assert trail.search() == []


class TestCleanup:
    def test_removes_only_old_archives(self, trail: AuditTrail):
        trail.log("document_created", "alice")
        directory = trail.log_path.parent
        old = directory / "audit.2025-01-01T00-00-00-000000.log"
        recent = directory / "audit.2026-02-01T00-00-00-000000.log"
        old.write_text("{}\n", encoding="utf-8")
        recent.write_text("{}\n", encoding="utf-8")
        long_ago = time.time() - 200 * 86400
        os.utime(old, (long_ago, long_ago))
        os.utime(trail.log_path, (long_ago, long_ago))

        assert trail.cleanup_old_logs(90) == 1
        assert not old.exists()
        assert recent.exists()
        assert trail.log_path.exists()
