"""Daemon process — background maintenance mode.

Usage: python -m devrecorder serve

Manages:
- Scheduler (startup integrity check, auto-archive, audit pruning)
- PID file (prevent duplicate instances on one docs directory)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from devrecorder.config import RecorderConfig, load_config
from devrecorder.core import Recorder
from devrecorder.scheduler.jobs import Scheduler

logger = logging.getLogger(__name__)


class RecorderDaemon:
    """Always-on maintenance process."""

    def __init__(self, config: RecorderConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"devrecorder daemon already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        recorder = Recorder(self.config)
        scheduler = Scheduler(recorder, self.config)

        logger.info(
            "devrecorder daemon starting (docs=%s, summarizer=%s)",
            self.config.documents.docs_dir,
            self.config.summarizer.provider,
        )

        try:
            await scheduler.start(self._shutdown_event)
        except asyncio.CancelledError:
            pass
        finally:
            self._remove_pid()
            logger.info("devrecorder daemon stopped.")
