"""CorpusEngine: the service object every caller goes through.

Constructed once with its collaborators injected (store, gateway, chunker);
``from_config`` wires the production stack from a CorpusConfig. The engine
owns the database connection and must be closed after use.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path

from nestcorpus.config import CorpusConfig
from nestcorpus.db.connection import Database
from nestcorpus.db.models import IndexOutcome, IndexStats, QueryResult, SourceItem
from nestcorpus.db.schema import initialize
from nestcorpus.db.vector_store import VectorStore
from nestcorpus.errors import ProviderError, ValidationError
from nestcorpus.ingest.chunker import TextChunker
from nestcorpus.ingest.indexer import Indexer
from nestcorpus.ingest.lifecycle import IndexLifecycleManager
from nestcorpus.logging_config import get_logger
from nestcorpus.rag.gateway import ProviderGateway, ProviderLimiter, RetryPolicy
from nestcorpus.rag.providers import LiteLLMEmbeddingProvider, LiteLLMGenerationProvider
from nestcorpus.rag.retriever import Retriever, RetrieverConfig
from nestcorpus.rag.synthesizer import NO_MATCH_ANSWER, AnswerSynthesizer, SynthesizerConfig

logger = get_logger(__name__)

DEFAULT_DB = Path(".nestcorpus.db")

QUERY_FAILED_ANSWER = (
    "Search is temporarily unavailable: the query could not be embedded. "
    "Please try again shortly."
)


class CorpusEngine:
    """Index saved items and answer questions over them.

    Args:
        conn: Open connection with the schema initialised; owned by the engine.
        gateway: Provider gateway shared by indexing and queries.
        chunker: Text chunker for indexing.
        retrieval: Retrieval parameters (top_k, threshold).
        snippet_chars: Citation snippet length.
        dimensions: Expected embedding dimension for stored vectors.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        gateway: ProviderGateway,
        chunker: TextChunker | None = None,
        retrieval: RetrieverConfig | None = None,
        snippet_chars: int = 200,
        dimensions: int | None = None,
    ) -> None:
        self._conn = conn
        self.gateway = gateway
        self.store = VectorStore(conn, dimensions=dimensions)
        retrieval = retrieval or RetrieverConfig()
        self.indexer = Indexer(self.store, gateway, chunker)
        self.retriever = Retriever(self.store, gateway, retrieval)
        self.synthesizer = AnswerSynthesizer(
            self.store,
            gateway,
            SynthesizerConfig(top_k=retrieval.top_k, snippet_chars=snippet_chars),
        )
        self.lifecycle = IndexLifecycleManager(self.store, self.indexer)
        self.lifecycle.recover_interrupted()

    @classmethod
    def from_config(
        cls,
        cfg: CorpusConfig,
        db_path: Path | str = DEFAULT_DB,
        limiter: ProviderLimiter | None = None,
    ) -> CorpusEngine:
        """Build the production engine: SQLite + sqlite-vec, LiteLLM providers.

        Args:
            cfg: Loaded configuration.
            db_path: Database file (created and migrated if missing).
            limiter: Process-wide provider limiter; a new one is created when None.
        """
        conn = Database(db_path).connect()
        try:
            initialize(conn)
        except Exception:
            conn.close()
            raise

        p = cfg.providers
        embedding = LiteLLMEmbeddingProvider(cfg.embedding.model, timeout=p.timeout_seconds)
        generation = (
            LiteLLMGenerationProvider(
                cfg.generation.model,
                timeout=p.timeout_seconds,
                max_tokens=cfg.generation.max_tokens,
                temperature=cfg.generation.temperature,
            )
            if cfg.generation.enabled
            else None
        )
        gateway = ProviderGateway(
            embedding,
            generation,
            limiter or ProviderLimiter(p.max_concurrency),
            RetryPolicy(
                max_attempts=p.max_attempts,
                backoff_base=p.backoff_base,
                backoff_max=p.backoff_max,
                timeout=p.timeout_seconds,
            ),
            dimensions=cfg.embedding.dimensions,
            max_input_chars=cfg.embedding.max_input_chars,
        )
        return cls(
            conn,
            gateway,
            chunker=TextChunker(cfg.chunking.window, cfg.chunking.overlap),
            retrieval=RetrieverConfig(
                top_k=cfg.retrieval.top_k,
                relevance_threshold=cfg.retrieval.relevance_threshold,
            ),
            snippet_chars=cfg.retrieval.snippet_chars,
            dimensions=cfg.embedding.dimensions,
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def index_source(self, item: SourceItem) -> IndexOutcome:
        """Index (or reindex) *item* and return its outcome.

        Provider failures degrade the source (partially_indexed / failed)
        and are reported in the outcome rather than raised.

        Raises:
            ValidationError: If the item has no id.
            StorageError: If the database write fails.
        """
        return await self.lifecycle.index(item)

    def schedule_index(self, item: SourceItem) -> asyncio.Task[IndexOutcome]:
        """Index *item* in the background; the save path never waits on this."""
        return self.lifecycle.schedule(item)

    async def index_many(self, items: Iterable[SourceItem]) -> list[IndexOutcome]:
        """Index several items concurrently; provider traffic stays limiter-bound.

        Every item runs to completion before the first error (in item
        order) is re-raised, so no sibling is abandoned mid-run.
        """
        results = await asyncio.gather(
            *(self.index_source(i) for i in items), return_exceptions=True
        )
        outcomes: list[IndexOutcome] = []
        for result in results:
            if isinstance(result, BaseException):
                raise result
            outcomes.append(result)
        return outcomes

    async def remove_source(self, source_id: str) -> bool:
        """Delete every chunk, embedding and metadata row of *source_id*."""
        if not source_id or not source_id.strip():
            raise ValidationError("source id must be a non-empty string")
        return await self.lifecycle.remove(source_id)

    async def wait_idle(self) -> list[IndexOutcome]:
        return await self.lifecycle.wait_idle()

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def query(self, text: str, scope: Iterable[str] | None = None) -> QueryResult:
        """Answer *text* from the indexed corpus.

        Args:
            text: Natural-language question.
            scope: Optional source ids to restrict the search to.

        Returns:
            QueryResult. "No index" and "no match" give the no-match answer
            with no sources and confidence 0.

        Raises:
            ValidationError: If *text* is empty.
            StorageError: If the database read fails.
        """
        if not text or not text.strip():
            raise ValidationError("query must be a non-empty string")
        started = time.perf_counter()
        allowed = frozenset(scope) if scope is not None else None

        if not self.retriever.has_candidates(allowed):
            result = QueryResult(answer=NO_MATCH_ANSWER)
        else:
            try:
                retrieved = await self.retriever.retrieve(text, allowed)
            except ProviderError as exc:
                logger.warning("Query embedding failed: %s", exc)
                result = QueryResult(answer=QUERY_FAILED_ANSWER)
            else:
                result = await self.synthesizer.synthesize(text, retrieved)

        result.processing_time_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "Query answered in %d ms with %d source(s)",
            result.processing_time_ms, len(result.sources),
        )
        return result

    def get_index_stats(self) -> IndexStats:
        return self.store.stats()

    def close(self) -> None:
        self._conn.close()

    async def __aenter__(self) -> CorpusEngine:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.wait_idle()
        self.close()
