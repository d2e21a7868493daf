"""Answer synthesis: citations, confidence, grounded generation with fallback.

Pipeline:
  1. Dedupe retrieved chunks by source: one citation per source, carrying
     the best chunk's snippet and similarity.
  2. Ask the generation provider for an answer grounded in the retrieved
     chunks (numbered context block, "say so if insufficient").
  3. If generation is disabled or fails after retries, return the best
     snippets verbatim, flagged as not synthesized.

Confidence = min(0.95, mean similarity × filled_slots / top_k); 0 for no matches.
"""

from __future__ import annotations

from dataclasses import dataclass

from nestcorpus.db.models import Citation, QueryResult, ScoredChunk
from nestcorpus.db.vector_store import VectorStore
from nestcorpus.errors import ProviderError
from nestcorpus.logging_config import get_logger
from nestcorpus.rag.gateway import ProviderGateway

logger = get_logger(__name__)

NO_MATCH_ANSWER = "I couldn't find any relevant content in your saved items for this query."
FALLBACK_HEADER = (
    "Generation unavailable. Showing the most relevant saved excerpts (not synthesized):"
)
_MAX_CONFIDENCE = 0.95


@dataclass
class SynthesizerConfig:
    top_k: int = 5
    snippet_chars: int = 200


class AnswerSynthesizer:
    def __init__(
        self,
        store: VectorStore,
        gateway: ProviderGateway,
        config: SynthesizerConfig | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self.config = config or SynthesizerConfig()

    async def synthesize(self, query: str, retrieved: list[ScoredChunk]) -> QueryResult:
        """Build the QueryResult for *query* from best-first *retrieved* chunks.

        Citations are deduplicated per source, but generation sees every
        retrieved chunk, so several passages of one source can inform the answer.
        """
        if not retrieved:
            return QueryResult(answer=NO_MATCH_ANSWER)

        citations = self.build_citations(retrieved)
        confidence = compute_confidence(retrieved, self.config.top_k)

        if self._gateway.can_generate:
            try:
                answer = await self._gateway.synthesize(query, [s.chunk for s in retrieved])
            except ProviderError as exc:
                logger.warning("Answer generation failed, returning raw snippets: %s", exc)
            else:
                if answer:
                    return QueryResult(
                        answer=answer,
                        sources=citations,
                        confidence=confidence,
                        synthesized=True,
                    )

        return QueryResult(
            answer=fallback_answer(citations),
            sources=citations,
            confidence=confidence,
            synthesized=False,
        )

    def build_citations(self, retrieved: list[ScoredChunk]) -> list[Citation]:
        """One citation per source, in order of its best-scoring chunk."""
        citations: list[Citation] = []
        seen: set[str] = set()
        for scored in retrieved:
            source_id = scored.chunk.source_id
            if source_id in seen:
                continue
            seen.add(source_id)
            metadata = self._store.get_metadata(source_id)
            title = metadata.title if metadata and metadata.title else f"Saved item {source_id}"
            url = metadata.url if metadata else ""
            citations.append(
                Citation(
                    source_id=source_id,
                    title=title,
                    url=url,
                    snippet=make_snippet(scored.chunk.text, self.config.snippet_chars),
                    relevance_score=round(scored.similarity, 4),
                )
            )
        return citations


def make_snippet(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def compute_confidence(retrieved: list[ScoredChunk], top_k: int) -> float:
    if not retrieved or top_k < 1:
        return 0.0
    mean = sum(max(0.0, s.similarity) for s in retrieved) / len(retrieved)
    filled = min(len(retrieved), top_k) / top_k
    return round(min(_MAX_CONFIDENCE, mean * filled), 4)


def fallback_answer(citations: list[Citation]) -> str:
    lines = [FALLBACK_HEADER, ""]
    for i, c in enumerate(citations, start=1):
        lines.append(f"[{i}] {c.title}: {c.snippet}")
    return "\n".join(lines)
