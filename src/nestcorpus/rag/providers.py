"""Provider boundary: embedding and answer generation.

Implementations make exactly one attempt per call and raise the provider
error taxonomy (RateLimited, NetworkError, AuthError). Retries, the shared
concurrency limit, and timeouts are applied by ProviderGateway.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from nestcorpus.db.models import Chunk
from nestcorpus.rag.llm_client import acomplete, aembed, validate_api_key

_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on the user's saved "
    "content. Answer using ONLY the numbered context passages provided. Cite passages "
    "by their number, e.g. [1]. If the context does not contain enough information "
    "to answer, say so clearly instead of guessing."
)


class EmbeddingProvider(ABC):
    """Converts text into a fixed-dimension vector."""

    model: str = ""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*."""


class GenerationProvider(ABC):
    """Synthesizes an answer from a query and its retrieved context."""

    model: str = ""

    @abstractmethod
    async def synthesize(self, query: str, context_chunks: list[Chunk]) -> str:
        """Return an answer to *query* grounded in *context_chunks*."""


def build_context_block(context_chunks: list[Chunk]) -> str:
    """Number the context passages so the answer can cite them."""
    return "\n\n".join(f"[{i + 1}] {c.text}" for i, c in enumerate(context_chunks))


def build_messages(query: str, context_chunks: list[Chunk]) -> list[dict]:
    context = build_context_block(context_chunks)
    return [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Context from my saved items:\n\n{context}\n\nQuestion: {query}",
        },
    ]


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """Embeddings via ``litellm.aembedding()``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        timeout: Per-call network timeout in seconds.
    """

    def __init__(self, model: str, timeout: float = 15.0) -> None:
        self.model = model
        self._timeout = timeout

    async def embed(self, text: str) -> list[float]:
        validate_api_key(self.model)
        return await aembed(self.model, text, timeout=self._timeout)


class LiteLLMGenerationProvider(GenerationProvider):
    """Grounded answer synthesis via ``litellm.acompletion()``."""

    def __init__(
        self,
        model: str,
        timeout: float = 15.0,
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> None:
        self.model = model
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def synthesize(self, query: str, context_chunks: list[Chunk]) -> str:
        validate_api_key(self.model)
        answer = await acomplete(
            self.model,
            build_messages(query, context_chunks),
            timeout=self._timeout,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        return answer.strip()
