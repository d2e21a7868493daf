"""Domain models for the corpus engine."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from nestcorpus.errors import NestCorpusError, ValidationError


class IndexStatus(str, Enum):
    UNINDEXED = "unindexed"
    INDEXING = "indexing"
    INDEXED = "indexed"
    PARTIALLY_INDEXED = "partially_indexed"
    FAILED = "failed"


# indexing -> unindexed only when a cancelled first run is rolled back.
_TRANSITIONS: dict[IndexStatus, frozenset[IndexStatus]] = {
    IndexStatus.UNINDEXED: frozenset({IndexStatus.INDEXING}),
    IndexStatus.INDEXING: frozenset(
        {
            IndexStatus.INDEXED,
            IndexStatus.PARTIALLY_INDEXED,
            IndexStatus.FAILED,
            IndexStatus.UNINDEXED,
        }
    ),
    IndexStatus.INDEXED: frozenset({IndexStatus.INDEXING}),
    IndexStatus.PARTIALLY_INDEXED: frozenset({IndexStatus.INDEXING}),
    IndexStatus.FAILED: frozenset({IndexStatus.INDEXING}),
}


def check_transition(current: IndexStatus, new: IndexStatus) -> None:
    """Raise ValidationError if *current* → *new* is not a legal state change."""
    if new not in _TRANSITIONS[current]:
        raise ValidationError(
            f"Illegal index status transition: {current.value} -> {new.value}"
        )


def content_hash(text: str) -> str:
    """SHA-256 fingerprint of a source's combined text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SourceItem:
    """One saved unit of content, as handed over by the ingestion side."""

    id: str
    title: str
    url: str
    combined_text: str

    @property
    def content_hash(self) -> str:
        return content_hash(self.combined_text)

    @classmethod
    def from_parts(
        cls, id: str, title: str, url: str, parts: SavedItemParts | None = None
    ) -> SourceItem:
        from nestcorpus.ingest.source_text import build_combined_text

        return cls(
            id=id,
            title=title,
            url=url,
            combined_text=build_combined_text(title, parts or SavedItemParts()),
        )


@dataclass
class SavedItemParts:
    """Raw text parts of a saved item (page, note, highlight bundle)."""

    user_note: str = ""
    ai_summary: str = ""
    extracted_text: str = ""
    highlights: list[tuple[str, str]] = field(default_factory=list)  # (selected_text, note)
    attachment_texts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Chunk:
    source_id: str
    chunk_index: int
    text: str
    start_offset: int
    end_offset: int

    @property
    def id(self) -> str:
        return chunk_id(self.source_id, self.chunk_index)


def chunk_id(source_id: str, chunk_index: int) -> str:
    return f"{source_id}_chunk_{chunk_index}"


@dataclass(frozen=True)
class EmbeddingRecord:
    chunk_id: str
    vector: list[float]
    created_at: datetime


@dataclass(frozen=True)
class IndexedChunk:
    """A stored chunk together with its current embedding."""

    chunk: Chunk
    embedding: EmbeddingRecord


@dataclass
class SourceIndexMetadata:
    source_id: str
    title: str = ""
    url: str = ""
    content_hash: str = ""
    chunk_count: int = 0
    status: IndexStatus = IndexStatus.UNINDEXED
    failed_chunks: list[int] = field(default_factory=list)
    error: str | None = None
    last_updated: datetime | None = None
    chunk_window: int = 0
    chunk_overlap: int = 0


@dataclass(frozen=True)
class ScoredChunk:
    chunk: Chunk
    similarity: float
    created_at: datetime


@dataclass(frozen=True)
class Citation:
    source_id: str
    title: str
    url: str
    snippet: str
    relevance_score: float


@dataclass
class QueryResult:
    answer: str
    sources: list[Citation] = field(default_factory=list)
    confidence: float = 0.0
    processing_time_ms: int = 0
    synthesized: bool = False


@dataclass(frozen=True)
class IndexStats:
    total_chunks: int
    total_sources: int
    last_updated: datetime | None


# ------------------------------------------------------------------
# Indexing outcomes
# ------------------------------------------------------------------


@dataclass
class IndexOutcome:
    """Typed result of one indexing pass for a source."""

    source_id: str
    status: IndexStatus
    chunk_count: int = 0
    failed_chunks: list[int] = field(default_factory=list)
    error: NestCorpusError | None = None
    cancelled: bool = False


@dataclass
class Indexed(IndexOutcome):
    status: IndexStatus = IndexStatus.INDEXED


@dataclass
class PartiallyIndexed(IndexOutcome):
    status: IndexStatus = IndexStatus.PARTIALLY_INDEXED


@dataclass
class Failed(IndexOutcome):
    status: IndexStatus = IndexStatus.FAILED


@dataclass
class Unchanged(IndexOutcome):
    """Content hash matched an already indexed source; nothing was embedded."""

    status: IndexStatus = IndexStatus.INDEXED
