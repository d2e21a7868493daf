"""Shared pytest fixtures: temporary database, fake providers, engine factory."""

from __future__ import annotations

import re
from collections.abc import Callable

import pytest

from nestcorpus.db.connection import Database
from nestcorpus.db.models import Chunk
from nestcorpus.db.schema import initialize
from nestcorpus.engine import CorpusEngine
from nestcorpus.errors import ProviderError
from nestcorpus.ingest.chunker import TextChunker
from nestcorpus.rag.gateway import ProviderGateway, ProviderLimiter, RetryPolicy
from nestcorpus.rag.providers import EmbeddingProvider, GenerationProvider
from nestcorpus.rag.retriever import RetrieverConfig

# One axis per topic; the last axis is a small constant so no vector has zero norm.
TOPICS: list[tuple[str, ...]] = [
    ("fox", "foxes", "dog", "dogs", "jump", "jumps", "jumped"),
    ("python", "code", "program", "programming", "function"),
    ("recipe", "cook", "cooking", "bread", "flour", "oven"),
    ("mountain", "hiking", "trail", "summit"),
    ("piano", "music", "chord", "melody"),
    ("space", "rocket", "orbit", "planet"),
    ("garden", "tomato", "soil", "compost"),
]
DIMS = len(TOPICS) + 1

_WORD = re.compile(r"[a-z]+")


def topic_vector(text: str) -> list[float]:
    words = _WORD.findall(text.lower())
    vector = [float(sum(words.count(k) for k in keywords)) for keywords in TOPICS]
    vector.append(0.05)
    return vector


class FakeEmbedding(EmbeddingProvider):
    """Deterministic keyword-topic embedder.

    ``fail_when`` may return an exception to raise for a given text.
    """

    model = "fake/topic-embedder"

    def __init__(self, fail_when: Callable[[str], Exception | None] | None = None) -> None:
        self.fail_when = fail_when
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_when is not None:
            error = self.fail_when(text)
            if error is not None:
                raise error
        return topic_vector(text)


class FakeGeneration(GenerationProvider):
    model = "fake/answerer"

    def __init__(self, answer: str = "Foxes jump over dogs [1].", error: ProviderError | None = None):
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, list[Chunk]]] = []

    async def synthesize(self, query: str, context_chunks: list[Chunk]) -> str:
        self.calls.append((query, list(context_chunks)))
        if self.error is not None:
            raise self.error
        return self.answer


FAST_RETRY = RetryPolicy(max_attempts=3, backoff_base=0.0, backoff_max=0.0, timeout=5.0)


def make_gateway(
    embedding: EmbeddingProvider | None = None,
    generation: GenerationProvider | None = None,
    limiter: ProviderLimiter | None = None,
    policy: RetryPolicy | None = None,
) -> ProviderGateway:
    return ProviderGateway(
        embedding or FakeEmbedding(),
        generation,
        limiter or ProviderLimiter(4),
        policy or FAST_RETRY,
        dimensions=DIMS,
    )


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".nestcorpus.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def make_engine(tmp_path):
    """Factory for engines over a fresh database with fake providers."""
    engines: list[CorpusEngine] = []

    def _make(
        embedding: EmbeddingProvider | None = None,
        generation: GenerationProvider | None = None,
        *,
        window: int = 1000,
        overlap: int = 200,
        top_k: int = 5,
        threshold: float = 0.7,
        limiter: ProviderLimiter | None = None,
        db_name: str = "corpus.db",
    ) -> CorpusEngine:
        conn = Database(tmp_path / db_name).connect()
        initialize(conn)
        engine = CorpusEngine(
            conn,
            make_gateway(embedding, generation, limiter),
            chunker=TextChunker(window, overlap),
            retrieval=RetrieverConfig(top_k=top_k, relevance_threshold=threshold),
            dimensions=DIMS,
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Run CLI commands in tmp_path with a small project config and a fake embedder.

    LiteLLM is patched at the provider seam, so the real provider classes and
    gateway run unchanged. Returns the list of texts sent for embedding.
    """
    import yaml

    from nestcorpus import config, logging_config
    from nestcorpus.rag import providers

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "_GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml")
    monkeypatch.setattr(logging_config, "_configured", True)
    for name in ("NESTCORPUS_EMBEDDING_MODEL", "NESTCORPUS_GENERATION_MODEL", "NESTCORPUS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "nestcorpus.yaml").write_text(
        yaml.dump(
            {
                "embedding": {"dimensions": DIMS},
                "generation": {"enabled": False},
                "providers": {"backoff_base": 0, "backoff_max": 0},
            }
        ),
        encoding="utf-8",
    )

    embedded: list[str] = []

    async def _fake_aembed(model: str, text: str, timeout: float) -> list[float]:
        embedded.append(text)
        return topic_vector(text)

    monkeypatch.setattr(providers, "aembed", _fake_aembed)
    monkeypatch.setattr(providers, "validate_api_key", lambda model: None)
    return embedded
