"""Configuration loading from environment variables and devrecorder.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DOCS_DIR = Path(".devrecorder") / "docs"
_CONFIG_FILENAME = "devrecorder.toml"


@dataclass
class SummarizerConfig:
    """Summarization backend selection."""

    provider: str = "ollama"  # ollama | anthropic | extractive
    model: str = "llama3.2"
    endpoint: str = "http://localhost:11434"
    timeout: float = 30.0
    probe_timeout: float = 2.0
    max_length: int = 2000
    anthropic_model: str = "claude-sonnet-4-5-20250929"


@dataclass
class EmbedderConfig:
    """Embedding backend selection. ``none`` disables semantic scoring."""

    provider: str = "none"  # none | ollama | hashing
    model: str = "nomic-embed-text"
    endpoint: str = "http://localhost:11434"
    timeout: float = 10.0
    probe_timeout: float = 2.0


@dataclass
class DocumentConfig:
    """Record store settings."""

    docs_dir: Path = _DEFAULT_DOCS_DIR
    auto_archive_days: int = 90
    author: str = "unknown"


@dataclass
class SearchConfig:
    max_results: int = 3
    recent_count: int = 5
    include_archived: bool = False


@dataclass
class MergeConfig:
    """Similarity thresholds."""

    threshold: float = 0.85
    file_overlap_threshold: float = 0.5
    duplicate_warning_threshold: float = 0.9


@dataclass
class IntegrityConfig:
    check_on_startup: bool = True
    auto_recover: bool = False


@dataclass
class AuditConfig:
    """Audit trail location and rotation."""

    log_path: Path | None = None  # defaults to <docs_dir>/.audit/audit.log
    max_bytes: int = 1024 * 1024
    retention_days: int = 90


@dataclass
class SchedulerConfig:
    interval: int = 3600


@dataclass
class RecorderConfig:
    """Top-level devrecorder configuration."""

    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    embedder: EmbedderConfig = field(default_factory=EmbedderConfig)
    documents: DocumentConfig = field(default_factory=DocumentConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    integrity: IntegrityConfig = field(default_factory=IntegrityConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    log_level: str = "INFO"

    @property
    def audit_log_path(self) -> Path:
        return self.audit.log_path or self.documents.docs_dir / ".audit" / "audit.log"

    @property
    def pid_file(self) -> Path:
        return self.documents.docs_dir / ".devrecorder.pid"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return bool(default)
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(config_path: Path | None = None) -> RecorderConfig:
    """Load configuration from environment variables and optional devrecorder.toml.

    Priority: environment variables > devrecorder.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.devrecorder/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".devrecorder" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    summarizer_data = file_data.get("summarizer", {})
    embedder_data = file_data.get("embedder", {})
    documents_data = file_data.get("documents", {})
    search_data = file_data.get("search", {})
    merge_data = file_data.get("merge", {})
    integrity_data = file_data.get("integrity", {})
    audit_data = file_data.get("audit", {})
    scheduler_data = file_data.get("scheduler", {})

    audit_path = os.getenv("DEVREC_AUDIT_LOG", audit_data.get("log_path"))

    config = RecorderConfig(
        summarizer=SummarizerConfig(
            provider=os.getenv(
                "DEVREC_SUMMARIZER", summarizer_data.get("provider", "ollama")
            ),
            model=os.getenv("DEVREC_SUMMARIZER_MODEL", summarizer_data.get("model", "llama3.2")),
            endpoint=os.getenv(
                "DEVREC_OLLAMA_ENDPOINT",
                summarizer_data.get("endpoint", "http://localhost:11434"),
            ),
            timeout=float(summarizer_data.get("timeout", 30.0)),
            probe_timeout=float(summarizer_data.get("probe_timeout", 2.0)),
            max_length=int(summarizer_data.get("max_length", 2000)),
            anthropic_model=summarizer_data.get(
                "anthropic_model", "claude-sonnet-4-5-20250929"
            ),
        ),
        embedder=EmbedderConfig(
            provider=os.getenv("DEVREC_EMBEDDER", embedder_data.get("provider", "none")),
            model=os.getenv(
                "DEVREC_EMBEDDING_MODEL", embedder_data.get("model", "nomic-embed-text")
            ),
            endpoint=os.getenv(
                "DEVREC_OLLAMA_ENDPOINT",
                embedder_data.get("endpoint", "http://localhost:11434"),
            ),
            timeout=float(embedder_data.get("timeout", 10.0)),
            probe_timeout=float(embedder_data.get("probe_timeout", 2.0)),
        ),
        documents=DocumentConfig(
            docs_dir=Path(
                os.getenv("DEVREC_DOCS_DIR", documents_data.get("docs_dir", str(_DEFAULT_DOCS_DIR)))
            ),
            auto_archive_days=int(
                os.getenv("DEVREC_AUTO_ARCHIVE_DAYS", documents_data.get("auto_archive_days", 90))
            ),
            author=os.getenv("DEVREC_AUTHOR", documents_data.get("author", "unknown")),
        ),
        search=SearchConfig(
            max_results=int(search_data.get("max_results", 3)),
            recent_count=int(search_data.get("recent_count", 5)),
            include_archived=bool(search_data.get("include_archived", False)),
        ),
        merge=MergeConfig(
            threshold=float(os.getenv("DEVREC_MERGE_THRESHOLD", merge_data.get("threshold", 0.85))),
            file_overlap_threshold=float(merge_data.get("file_overlap_threshold", 0.5)),
            duplicate_warning_threshold=float(
                merge_data.get("duplicate_warning_threshold", 0.9)
            ),
        ),
        integrity=IntegrityConfig(
            check_on_startup=_env_bool(
                "DEVREC_CHECK_ON_STARTUP", integrity_data.get("check_on_startup", True)
            ),
            auto_recover=_env_bool(
                "DEVREC_AUTO_RECOVER", integrity_data.get("auto_recover", False)
            ),
        ),
        audit=AuditConfig(
            log_path=Path(audit_path) if audit_path else None,
            max_bytes=int(audit_data.get("max_bytes", 1024 * 1024)),
            retention_days=int(audit_data.get("retention_days", 90)),
        ),
        scheduler=SchedulerConfig(
            interval=int(
                os.getenv("DEVREC_SCHEDULER_INTERVAL", scheduler_data.get("interval", 3600))
            ),
        ),
        log_level=os.getenv("DEVREC_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
