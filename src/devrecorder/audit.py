"""Audit trail — append-only JSONL event log with size rotation.

One JSON object per line:
    {"timestamp": "...", "action": "merge_documents", "actor": "system",
     "details": {...}, "impact": "high"}

Past ``max_bytes`` the live log is renamed to ``audit.<timestamp>.log`` and a
fresh one is started. ``cleanup_old_logs`` prunes those archives by age.

Writing an event never disrupts the operation being audited: I/O failures
are logged as warnings.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from devrecorder.errors import ValidationError
from devrecorder.records.types import now_iso, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 1024 * 1024
IMPACTS = ("low", "medium", "high")


@dataclass
class AuditEvent:
    timestamp: str
    action: str
    actor: str
    details: dict[str, Any] = field(default_factory=dict)
    impact: str = "low"

    @classmethod
    def from_dict(cls, data: dict) -> AuditEvent:
        return cls(
            timestamp=str(data.get("timestamp", "")),
            action=str(data.get("action", "")),
            actor=str(data.get("actor", "")),
            details=dict(data.get("details") or {}),
            impact=str(data.get("impact", "low")),
        )


class AuditTrail:
    """JSONL audit sink."""

    def __init__(self, log_path: Path, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.log_path = log_path
        self.max_bytes = max_bytes
        self._lock = threading.Lock()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(
        self,
        action: str,
        actor: str = "system",
        details: dict[str, Any] | None = None,
        impact: str = "low",
    ) -> AuditEvent:
        """Append one event, then rotate if the log grew past ``max_bytes``."""
        if impact not in IMPACTS:
            raise ValidationError("impact", f"must be one of {', '.join(IMPACTS)}")
        event = AuditEvent(
            timestamp=now_iso(),
            action=action,
            actor=actor,
            details=details or {},
            impact=impact,
        )
        line = json.dumps(asdict(event), ensure_ascii=False, default=str)
        with self._lock:
            try:
                with self.log_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.warning("Failed to write audit event %s: %s", action, e)
                return event
            self._rotate_if_needed()
        logger.debug("Audit: %s by %s (%s)", action, actor, impact)
        return event

    def _rotate_if_needed(self) -> None:
        try:
            size = self.log_path.stat().st_size
        except FileNotFoundError:
            return
        if size <= self.max_bytes:
            return
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
        archive = self.log_path.with_name(f"{self.log_path.stem}.{stamp}{self.log_path.suffix}")
        try:
            self.log_path.rename(archive)
        except OSError as e:
            logger.warning("Audit log rotation failed: %s", e)
            return
        logger.info("Audit log rotated: %s", archive)

    def search(
        self,
        start: str | None = None,
        end: str | None = None,
        action: str | None = None,
        actor: str | None = None,
    ) -> list[AuditEvent]:
        """Events in the live log matching every given filter. Unreadable log -> []."""
        try:
            text = self.log_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning("Failed to read audit log: %s", e)
            return []

        start_dt = parse_timestamp(start) if start else None
        end_dt = parse_timestamp(end) if end else None
        events = []
        for lineno, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt audit line %d in %s", lineno, self.log_path)
                continue
            if not isinstance(data, dict):
                continue
            event = AuditEvent.from_dict(data)
            if action and event.action != action:
                continue
            if actor and event.actor != actor:
                continue
            if start_dt or end_dt:
                ts = parse_timestamp(event.timestamp)
                if ts is None:
                    continue
                if start_dt and ts < start_dt:
                    continue
                if end_dt and ts > end_dt:
                    continue
            events.append(event)
        return events

    def cleanup_old_logs(self, days: int) -> int:
        """Delete rotated archives not modified for ``days`` days. The live log is kept."""
        cutoff = time.time() - days * 86400
        pattern = f"{self.log_path.stem}.*{self.log_path.suffix}"
        count = 0
        for path in self.log_path.parent.glob(pattern):
            if path == self.log_path:
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    count += 1
            except OSError as e:
                logger.warning("Failed to remove audit archive %s: %s", path, e)
        if count:
            logger.info("Removed %d old audit archives", count)
        return count
