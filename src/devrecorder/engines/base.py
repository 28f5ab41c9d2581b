"""Summarizer/embedder protocols and the fallback chains around them."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Summarizer(Protocol):
    """Protocol that all summarization backends must implement."""

    @property
    def name(self) -> str: ...

    async def is_available(self) -> bool:
        """Cheap reachability probe. Must not raise."""
        ...

    async def summarize(self, text: str, max_length: int) -> str:
        """Return a summary of at most ``max_length`` characters."""
        ...


@runtime_checkable
class Embedder(Protocol):
    """Protocol that all embedding backends must implement."""

    @property
    def name(self) -> str: ...

    async def is_available(self) -> bool: ...

    async def embed(self, text: str) -> list[float]: ...


class SummarizerChain:
    """Primary summarizer with a pure fallback.

    The primary is probed, then called under a timeout. Any failure is
    logged and answered by the fallback, so ``summarize`` never fails on
    service trouble.
    """

    def __init__(
        self,
        primary: Summarizer | None,
        fallback: Summarizer,
        timeout: float = 30.0,
        probe_timeout: float = 2.0,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    @property
    def name(self) -> str:
        return self.primary.name if self.primary is not None else self.fallback.name

    async def is_available(self) -> bool:
        return True

    async def summarize(self, text: str, max_length: int) -> str:
        if self.primary is not None:
            try:
                if await asyncio.wait_for(self.primary.is_available(), self.probe_timeout):
                    return await asyncio.wait_for(
                        self.primary.summarize(text, max_length), self.timeout
                    )
                logger.warning(
                    "Summarizer %s unavailable, using %s", self.primary.name, self.fallback.name
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Summarizer %s timed out after %.1fs, using %s",
                    self.primary.name,
                    self.timeout,
                    self.fallback.name,
                )
            except Exception as e:
                logger.warning(
                    "Summarizer %s failed (%s), using %s", self.primary.name, e, self.fallback.name
                )
        return await self.fallback.summarize(text, max_length)


class EmbedderChain:
    """Primary embedder with a pure fallback. Same contract as SummarizerChain."""

    def __init__(
        self,
        primary: Embedder | None,
        fallback: Embedder,
        timeout: float = 10.0,
        probe_timeout: float = 2.0,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.timeout = timeout
        self.probe_timeout = probe_timeout

    @property
    def name(self) -> str:
        return self.primary.name if self.primary is not None else self.fallback.name

    async def is_available(self) -> bool:
        return True

    async def embed(self, text: str) -> list[float]:
        if self.primary is not None:
            try:
                if await asyncio.wait_for(self.primary.is_available(), self.probe_timeout):
                    return await asyncio.wait_for(self.primary.embed(text), self.timeout)
                logger.warning(
                    "Embedder %s unavailable, using %s", self.primary.name, self.fallback.name
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Embedder %s timed out after %.1fs, using %s",
                    self.primary.name,
                    self.timeout,
                    self.fallback.name,
                )
            except Exception as e:
                logger.warning(
                    "Embedder %s failed (%s), using %s", self.primary.name, e, self.fallback.name
                )
        return await self.fallback.embed(text)
