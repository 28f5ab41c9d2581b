"""Summarization and embedding backends.

Every backend sits behind a chain whose fallback is a pure in-process
adapter, so callers never branch on backend availability.
"""

from __future__ import annotations

from devrecorder.config import EmbedderConfig, SummarizerConfig
from devrecorder.engines.base import Embedder, EmbedderChain, Summarizer, SummarizerChain
from devrecorder.engines.fallback import ExtractiveSummarizer, HashingEmbedder, LiteralSummarizer
from devrecorder.engines.ollama import OllamaEmbedder, OllamaSummarizer

__all__ = [
    "Embedder",
    "EmbedderChain",
    "ExtractiveSummarizer",
    "HashingEmbedder",
    "LiteralSummarizer",
    "OllamaEmbedder",
    "OllamaSummarizer",
    "Summarizer",
    "SummarizerChain",
    "build_embedder",
    "build_summarizer",
]


def build_summarizer(config: SummarizerConfig) -> SummarizerChain:
    """Chain for the configured provider: ollama | anthropic | extractive."""
    name = config.provider
    primary: Summarizer | None
    if name == "ollama":
        primary = OllamaSummarizer(
            model=config.model,
            endpoint=config.endpoint,
            timeout=config.timeout,
            probe_timeout=config.probe_timeout,
        )
    elif name == "anthropic":
        from devrecorder.engines.anthropic_api import AnthropicSummarizer

        primary = AnthropicSummarizer(model=config.anthropic_model)
    elif name == "extractive":
        primary = None
    else:
        raise ValueError(f"Unknown summarizer: {name}")
    return SummarizerChain(
        primary,
        ExtractiveSummarizer(),
        timeout=config.timeout,
        probe_timeout=config.probe_timeout,
    )


def build_embedder(config: EmbedderConfig) -> EmbedderChain | None:
    """Chain for the configured provider: none | ollama | hashing.

    ``none`` returns None: merge scans then run on file overlap alone.
    """
    name = config.provider
    if name == "none":
        return None
    primary: Embedder | None
    if name == "ollama":
        primary = OllamaEmbedder(
            model=config.model,
            endpoint=config.endpoint,
            timeout=config.timeout,
            probe_timeout=config.probe_timeout,
        )
    elif name == "hashing":
        primary = None
    else:
        raise ValueError(f"Unknown embedder: {name}")
    return EmbedderChain(
        primary,
        HashingEmbedder(),
        timeout=config.timeout,
        probe_timeout=config.probe_timeout,
    )
