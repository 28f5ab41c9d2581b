"""Ollama adapters (local HTTP API) for summarization and embeddings."""

from __future__ import annotations

import logging

import aiohttp

from devrecorder.errors import ExternalServiceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:11434"

SUMMARY_PROMPT = (
    "Summarize the following text in at most {max_length} characters. "
    "Keep only the key points.\n\n{text}"
)


async def probe_ollama(endpoint: str, timeout: float = 2.0) -> bool:
    """True if ``GET /api/tags`` answers 2xx within ``timeout`` seconds."""
    try:
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as session:
            async with session.get(f"{endpoint}/api/tags") as resp:
                return resp.status < 300
    except Exception as e:
        logger.debug("Ollama probe failed at %s: %s", endpoint, e)
        return False


async def _post_json(endpoint: str, path: str, payload: dict, timeout: float) -> dict:
    try:
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as session:
            async with session.post(f"{endpoint}{path}", json=payload) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise ExternalServiceUnavailable("ollama", f"HTTP {resp.status}: {text[:200]}")
                return await resp.json()
    except aiohttp.ClientError as e:
        raise ExternalServiceUnavailable("ollama", str(e)) from e


class OllamaSummarizer:
    """Summaries via ``/api/generate``."""

    def __init__(
        self,
        model: str = "llama3.2",
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 30.0,
        probe_timeout: float = 2.0,
    ) -> None:
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    @property
    def name(self) -> str:
        return "ollama"

    async def is_available(self) -> bool:
        return await probe_ollama(self.endpoint, self.probe_timeout)

    async def summarize(self, text: str, max_length: int) -> str:
        payload = {
            "model": self.model,
            "prompt": SUMMARY_PROMPT.format(max_length=max_length, text=text),
            "stream": False,
            "options": {
                "temperature": 0.3,
                # roughly two characters per token
                "num_predict": max_length // 2,
            },
        }
        data = await _post_json(self.endpoint, "/api/generate", payload, self.timeout)
        summary = str(data.get("response", "")).strip()
        if not summary:
            raise ExternalServiceUnavailable("ollama", "empty response")
        return summary


class OllamaEmbedder:
    """Embeddings via ``/api/embeddings``."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 10.0,
        probe_timeout: float = 2.0,
    ) -> None:
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    @property
    def name(self) -> str:
        return f"ollama:{self.model}"

    async def is_available(self) -> bool:
        return await probe_ollama(self.endpoint, self.probe_timeout)

    async def embed(self, text: str) -> list[float]:
        payload = {"model": self.model, "prompt": text}
        data = await _post_json(self.endpoint, "/api/embeddings", payload, self.timeout)
        embedding = data.get("embedding")
        if not embedding:
            raise ExternalServiceUnavailable("ollama", "empty embedding")
        return [float(x) for x in embedding]
