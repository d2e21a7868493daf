"""Dense retriever: embed the query, brute-force cosine scan over stored chunks.

A linear scan is fine at the target corpus size (tens of thousands of
chunks). Scoped queries only load the chunks of the allowed sources.

Ranking:
  1. cosine similarity, descending
  2. ties → newer embedding (created_at) first
  3. drop candidates below relevance_threshold
  4. keep top_k
"""

from __future__ import annotations

from collections.abc import Set
from dataclasses import dataclass

from nestcorpus.db.models import IndexedChunk, ScoredChunk
from nestcorpus.db.vector_store import VectorStore
from nestcorpus.db.vectors import cosine_similarity
from nestcorpus.rag.gateway import ProviderGateway


@dataclass
class RetrieverConfig:
    """Configuration for the dense retriever.

    Attributes:
        top_k: Maximum number of chunks returned.
        relevance_threshold: Minimum cosine similarity a chunk must reach.
    """

    top_k: int = 5
    relevance_threshold: float = 0.7


class Retriever:
    def __init__(
        self,
        store: VectorStore,
        gateway: ProviderGateway,
        config: RetrieverConfig | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self.config = config or RetrieverConfig()

    def has_candidates(self, scope: Set[str] | None = None) -> bool:
        """True when at least one embedded chunk is visible under *scope*."""
        if scope is None:
            return self._store.count() > 0
        return any(self._store.count(source_id) > 0 for source_id in scope)

    async def retrieve(self, query: str, scope: Set[str] | None = None) -> list[ScoredChunk]:
        """Return the best-matching chunks for *query*, best-first.

        Args:
            query: Natural-language query text.
            scope: Allowed source ids; None searches the whole corpus and an
                empty set matches nothing.

        Returns:
            Up to ``top_k`` chunks at or above the relevance threshold; an
            empty list when nothing qualifies.

        Raises:
            ProviderError: If the query cannot be embedded.
        """
        if scope is not None and not scope:
            return []
        query_vector = await self._gateway.embed(query)
        candidates = self._candidates(scope)
        return rank(query_vector, candidates, self.config)

    def _candidates(self, scope: Set[str] | None) -> list[IndexedChunk]:
        if scope is None:
            return self._store.get_all()
        return self._store.get_all_by_sources(scope)


def rank(
    query_vector: list[float],
    candidates: list[IndexedChunk],
    config: RetrieverConfig,
) -> list[ScoredChunk]:
    """Score *candidates* against *query_vector* and apply threshold + top-k."""
    scored = [
        ScoredChunk(
            chunk=entry.chunk,
            similarity=cosine_similarity(query_vector, entry.embedding.vector),
            created_at=entry.embedding.created_at,
        )
        for entry in candidates
    ]
    scored.sort(key=lambda s: (s.similarity, s.created_at), reverse=True)
    relevant = [s for s in scored if s.similarity >= config.relevance_threshold]
    return relevant[: config.top_k]
