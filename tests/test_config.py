"""Tests for configuration loading."""

import pytest
from pathlib import Path

from devrecorder.config import load_config

ENV_KEYS = [
    "DEVREC_SUMMARIZER",
    "DEVREC_SUMMARIZER_MODEL",
    "DEVREC_OLLAMA_ENDPOINT",
    "DEVREC_EMBEDDER",
    "DEVREC_EMBEDDING_MODEL",
    "DEVREC_DOCS_DIR",
    "DEVREC_AUTO_ARCHIVE_DAYS",
    "DEVREC_AUTHOR",
    "DEVREC_MERGE_THRESHOLD",
    "DEVREC_CHECK_ON_STARTUP",
    "DEVREC_AUTO_RECOVER",
    "DEVREC_AUDIT_LOG",
    "DEVREC_SCHEDULER_INTERVAL",
    "DEVREC_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self):
        config = load_config()
        assert config.summarizer.provider == "ollama"
        assert config.summarizer.timeout == 30.0
        assert config.embedder.provider == "none"
        assert config.documents.docs_dir == Path(".devrecorder") / "docs"
        assert config.merge.threshold == 0.85
        assert config.merge.file_overlap_threshold == 0.5
        assert config.search.max_results == 3
        assert config.audit.max_bytes == 1024 * 1024
        assert config.integrity.check_on_startup is True
        assert config.integrity.auto_recover is False

    def test_derived_paths(self):
        config = load_config()
        docs = config.documents.docs_dir
        assert config.audit_log_path == docs / ".audit" / "audit.log"
        assert config.pid_file == docs / ".devrecorder.pid"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DEVREC_SUMMARIZER", "extractive")
        monkeypatch.setenv("DEVREC_MERGE_THRESHOLD", "0.7")
        monkeypatch.setenv("DEVREC_AUTO_RECOVER", "yes")
        monkeypatch.setenv("DEVREC_AUDIT_LOG", "/tmp/custom-audit.log")

        config = load_config()
        assert config.summarizer.provider == "extractive"
        assert config.merge.threshold == 0.7
        assert config.integrity.auto_recover is True
        assert config.audit_log_path == Path("/tmp/custom-audit.log")

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "devrecorder.toml"
        toml_path.write_text("""
log_level = "DEBUG"

[summarizer]
provider = "anthropic"
anthropic_model = "claude-haiku-4-5"

[documents]
docs_dir = "notes"
author = "alice"

[merge]
threshold = 0.9
duplicate_warning_threshold = 0.95

[scheduler]
interval = 60
""")
        config = load_config(toml_path)
        assert config.summarizer.provider == "anthropic"
        assert config.summarizer.anthropic_model == "claude-haiku-4-5"
        assert config.documents.docs_dir == Path("notes")
        assert config.documents.author == "alice"
        assert config.merge.threshold == 0.9
        assert config.merge.duplicate_warning_threshold == 0.95
        assert config.scheduler.interval == 60
        assert config.log_level == "DEBUG"

    def test_toml_in_cwd_is_found(self, tmp_path: Path):
        (tmp_path / "devrecorder.toml").write_text('[embedder]\nprovider = "hashing"\n')
        assert load_config().embedder.provider == "hashing"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("DEVREC_AUTHOR", "bob")

        toml_path = tmp_path / "devrecorder.toml"
        toml_path.write_text("""
[documents]
author = "alice"
""")
        config = load_config(toml_path)
        assert config.documents.author == "bob"  # env wins
