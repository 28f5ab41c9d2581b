"""Entry point: python -m devrecorder [tool|check|serve]

- "tool <name> [json-args]": Invoke one tool and print its text
- "check [--recover]":       Integrity check over the docs directory
- "serve":                   Daemon mode (scheduler: auto-archive, audit pruning)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from devrecorder.config import load_config
from devrecorder.errors import RecorderError

USAGE = """\
Usage: python -m devrecorder [tool|check|serve]
  tool <name> [json-args]  — Invoke one tool, e.g. tool search_related_docs '{"prompt": "auth"}'
  check [--recover]        — Integrity check (and repair)
  serve                    — Daemon mode with the maintenance scheduler"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_tool(argv: list[str]) -> int:
    if not argv:
        print(USAGE, file=sys.stderr)
        return 1
    name = argv[0]
    try:
        args = json.loads(argv[1]) if len(argv) > 1 else {}
    except json.JSONDecodeError as e:
        print(f"Invalid JSON arguments: {e}", file=sys.stderr)
        return 1
    if not isinstance(args, dict):
        print("Tool arguments must be a JSON object", file=sys.stderr)
        return 1

    config = load_config()
    _setup_logging(config.log_level)

    from devrecorder.core import Recorder
    from devrecorder.tools.record_tools import invoke

    try:
        recorder = Recorder(config)
        print(asyncio.run(invoke(recorder, name, args)))
    except RecorderError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def _run_check(argv: list[str]) -> int:
    config = load_config()
    _setup_logging(config.log_level)

    from devrecorder.core import Recorder

    recorder = Recorder(config)
    print(asyncio.run(recorder.integrity_check(recover="--recover" in argv)))
    return 0


def _run_serve() -> int:
    config = load_config()
    _setup_logging(config.log_level)

    from devrecorder.daemon import RecorderDaemon

    daemon = RecorderDaemon(config)
    asyncio.run(daemon.run())
    return 0


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""

    if cmd == "tool":
        sys.exit(_run_tool(sys.argv[2:]))
    elif cmd == "check":
        sys.exit(_run_check(sys.argv[2:]))
    elif cmd == "serve":
        sys.exit(_run_serve())
    else:
        print(USAGE)
        sys.exit(1)


if __name__ == "__main__":
    main()
