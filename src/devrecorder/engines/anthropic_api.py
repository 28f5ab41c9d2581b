"""Anthropic API summarizer — optional, needs the ``api`` extra."""

from __future__ import annotations

import asyncio
import logging
import os

from devrecorder.errors import ExternalServiceUnavailable

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You summarize software implementation notes. Answer with the summary only, "
    "no preamble."
)


class AnthropicSummarizer:
    """Summaries through the `anthropic` SDK (Messages API)."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 1024,
    ) -> None:
        try:
            import anthropic

            self._client = anthropic.Anthropic()
        except ImportError:
            raise ImportError(
                "anthropic package required. Install with: pip install 'devrecorder[api]'"
            )
        self.model = model
        self.max_tokens = max_tokens

    @property
    def name(self) -> str:
        return "anthropic"

    async def is_available(self) -> bool:
        # No network probe: a missing key is the common failure
        return bool(os.getenv("ANTHROPIC_API_KEY"))

    async def summarize(self, text: str, max_length: int) -> str:
        prompt = f"Summarize the following text in at most {max_length} characters.\n\n{text}"
        try:
            response = await asyncio.to_thread(
                self._client.messages.create,
                model=self.model,
                max_tokens=min(self.max_tokens, max(16, max_length // 2)),
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            logger.error("Anthropic API error: %s", e)
            raise ExternalServiceUnavailable("anthropic", str(e)) from e

        summary = response.content[0].text.strip() if response.content else ""
        if not summary:
            raise ExternalServiceUnavailable("anthropic", "empty response")
        return summary
