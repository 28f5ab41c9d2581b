"""Scheduler for periodic maintenance using pure asyncio.

Jobs:
- Startup integrity check (optionally followed by automatic recovery)
- Auto-archive: move records older than ``auto_archive_days`` to .archive/
- Audit pruning: remove rotated audit logs past the retention period
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from devrecorder.errors import RecorderError

if TYPE_CHECKING:
    from devrecorder.config import RecorderConfig
    from devrecorder.core import Recorder

logger = logging.getLogger(__name__)


class Scheduler:
    """Simple asyncio-based scheduler for periodic maintenance."""

    def __init__(self, recorder: Recorder, config: RecorderConfig) -> None:
        self._recorder = recorder
        self._config = config
        self._interval = config.scheduler.interval

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Run the startup check, then periodic jobs until shutdown_event is set."""
        logger.info(
            "Scheduler started (interval=%ds, auto-archive after %d days)",
            self._interval,
            self._config.documents.auto_archive_days,
        )

        if self._config.integrity.check_on_startup:
            await self.startup_check()

        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._interval)
                break  # shutdown requested
            except asyncio.TimeoutError:
                pass  # interval elapsed, run jobs

            await self.run_once()

        logger.info("Scheduler stopped.")

    async def startup_check(self) -> None:
        """Integrity check, plus recovery when ``auto_recover`` is set."""
        auditor = self._recorder.auditor
        try:
            report = auditor.check()
            if report.issues and self._config.integrity.auto_recover:
                auditor.recover(report.issues)
            elif report.issues:
                logger.warning(
                    "Integrity check found %d issues (severity=%s); auto-recover is off",
                    len(report.issues),
                    report.severity,
                )
        except Exception as e:
            logger.error("Startup integrity check failed: %s", e)

    async def run_once(self) -> None:
        await self._auto_archive()
        await self._prune_audit()

    async def _auto_archive(self) -> None:
        days = self._config.documents.auto_archive_days
        if days <= 0:
            return
        recorder = self._recorder
        try:
            archived = recorder.store.archive_older_than(days, actor="system")
        except RecorderError as e:
            logger.error("Auto-archive failed: %s", e)
            return
        if archived:
            recorder.index.rebuild(recorder.store.list_active())
            recorder.audit.log(
                "auto_archive",
                "system",
                {"doc_ids": archived, "days": days},
                impact="medium",
            )

    async def _prune_audit(self) -> None:
        removed = self._recorder.audit.cleanup_old_logs(self._config.audit.retention_days)
        if removed:
            logger.info("Cleanup: removed %d old audit logs", removed)
