"""Single route for every provider call.

Each attempt:  acquire shared limiter → call with timeout → release.
Transient failures (RateLimited, NetworkError) back off exponentially and
retry up to ``max_attempts``; everything else fails on the first attempt.
Backoff sleeps happen outside the limiter so waiting calls don't hold slots.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from nestcorpus.db.models import Chunk
from nestcorpus.errors import NetworkError, ProviderError
from nestcorpus.logging_config import get_logger
from nestcorpus.rag.providers import EmbeddingProvider, GenerationProvider

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    timeout: float = 15.0

    def delay(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (0-based)."""
        return min(self.backoff_max, self.backoff_base * (2**attempt))


class ProviderLimiter:
    """Process-wide bound on in-flight provider calls."""

    def __init__(self, max_concurrency: int = 4) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def __aenter__(self) -> ProviderLimiter:
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.in_flight -= 1
        self._semaphore.release()


class ProviderGateway:
    """Embedding and generation calls with shared limiting, timeout and retry.

    Args:
        embedding: Embedding provider (required).
        generation: Generation provider, or None when synthesis is disabled.
        limiter: Shared limiter; one instance per process.
        policy: Retry / timeout policy.
        dimensions: Expected embedding dimension D; mismatches are rejected.
        max_input_chars: Embedding input is truncated to this many characters.
    """

    def __init__(
        self,
        embedding: EmbeddingProvider,
        generation: GenerationProvider | None,
        limiter: ProviderLimiter,
        policy: RetryPolicy | None = None,
        dimensions: int | None = None,
        max_input_chars: int = 8_000,
    ) -> None:
        self.embedding = embedding
        self.generation = generation
        self.limiter = limiter
        self.policy = policy or RetryPolicy()
        self.dimensions = dimensions
        self.max_input_chars = max_input_chars

    @property
    def can_generate(self) -> bool:
        return self.generation is not None

    async def embed(self, text: str) -> list[float]:
        """Embed *text*. Raises ProviderError once retries are exhausted."""
        vector = await self._call(
            lambda: self.embedding.embed(text[: self.max_input_chars]),
            what=f"embed via {self.embedding.model or type(self.embedding).__name__}",
        )
        if self.dimensions is not None and len(vector) != self.dimensions:
            raise ProviderError(
                f"Embedding has dimension {len(vector)}, expected {self.dimensions}",
                provider=self.embedding.model,
            )
        return vector

    async def synthesize(self, query: str, context_chunks: list[Chunk]) -> str:
        if self.generation is None:
            raise ProviderError("No generation provider configured")
        generation = self.generation
        return await self._call(
            lambda: generation.synthesize(query, context_chunks),
            what=f"synthesize via {generation.model or type(generation).__name__}",
        )

    async def _call(self, fn: Callable[[], Awaitable[T]], what: str) -> T:
        attempts = max(1, self.policy.max_attempts)
        attempt = 0
        while True:
            try:
                async with self.limiter:
                    return await asyncio.wait_for(fn(), timeout=self.policy.timeout)
            except asyncio.TimeoutError as exc:
                error: ProviderError = NetworkError(
                    f"{what}: timed out after {self.policy.timeout}s"
                )
                error.__cause__ = exc
            except ProviderError as exc:
                error = exc

            attempt += 1
            if not error.retryable or attempt >= attempts:
                logger.warning("%s failed after %d attempt(s): %s", what, attempt, error)
                raise error
            delay = self.policy.delay(attempt - 1)
            logger.info(
                "%s: %s (attempt %d/%d), retrying in %.2fs",
                what, type(error).__name__, attempt, attempts, delay,
            )
            await asyncio.sleep(delay)
