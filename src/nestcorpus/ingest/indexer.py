"""Indexer: chunk, embed, and store one source item.

Write policy is replace-on-success: every embedding attempt finishes before
the store is touched, then the source's old chunk set is swapped for the
new one in a single transaction. A failed reindex never leaves a source with
zero searchable content.

Passes:
  full   : content is new or changed (or the last pass failed): embed all chunks.
  retry  : same content and chunk parameters, previous pass partially
           indexed: embed only the recorded failed chunk indices and merge
           them in.
  skip   : same content, already indexed: nothing to embed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace

from nestcorpus.db.models import (
    Chunk,
    EmbeddingRecord,
    Failed,
    Indexed,
    IndexedChunk,
    IndexOutcome,
    IndexStatus,
    PartiallyIndexed,
    SourceIndexMetadata,
    SourceItem,
    Unchanged,
    check_transition,
)
from nestcorpus.db.vector_store import VectorStore, utcnow
from nestcorpus.errors import (
    AuthError,
    PartialIndexError,
    ProviderError,
    StorageError,
    ValidationError,
)
from nestcorpus.ingest.chunker import TextChunker, normalize_text
from nestcorpus.logging_config import get_logger
from nestcorpus.rag.gateway import ProviderGateway

logger = get_logger(__name__)


class CancelToken:
    """Cooperative cancellation signal, checked between embedding calls."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class _EmbedBatch:
    succeeded: list[IndexedChunk] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    cancelled: bool = False
    auth_error: AuthError | None = None
    last_error: ProviderError | None = None


class Indexer:
    """Index SourceItems into a VectorStore.

    Args:
        store: Open VectorStore.
        gateway: Provider gateway (shared limiter, retry, timeout).
        chunker: Chunker; defaults to 1000-char windows with 200-char overlap.
    """

    def __init__(
        self,
        store: VectorStore,
        gateway: ProviderGateway,
        chunker: TextChunker | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._chunker = chunker or TextChunker()

    def chunk(self, item: SourceItem) -> list[Chunk]:
        return self._chunker.chunk(item.id, normalize_text(item.combined_text))

    async def index(self, item: SourceItem, cancel: CancelToken | None = None) -> IndexOutcome:
        """Run one indexing pass for *item* and return its typed outcome.

        Raises:
            ValidationError: If the item has no id.
            StorageError: If the store fails while writing. The source's
                pre-run status is restored before the error propagates.
        """
        if not item.id or not item.id.strip():
            raise ValidationError("SourceItem.id must be a non-empty string")

        cancel = cancel or CancelToken()
        previous = self._store.get_metadata(item.id)
        new_hash = item.content_hash

        if (
            previous is not None
            and previous.content_hash == new_hash
            and previous.status is IndexStatus.INDEXED
        ):
            if (previous.title, previous.url) != (item.title, item.url):
                self._store.update_details(item.id, item.title, item.url)
            logger.debug("Source %s unchanged, %d chunks already stored", item.id, previous.chunk_count)
            return Unchanged(source_id=item.id, chunk_count=previous.chunk_count)

        if previous is not None and previous.status is IndexStatus.INDEXING:
            # Left behind by an interrupted run.
            logger.warning("Source %s was left mid-indexing; treating as failed", item.id)
            previous.status = IndexStatus.FAILED
        self._mark_indexing(item, previous)

        try:
            return await self._run(item, previous, cancel)
        except (StorageError, ValidationError, asyncio.CancelledError) as exc:
            self._restore_after_error(item, previous, exc)
            raise

    async def _run(
        self, item: SourceItem, previous: SourceIndexMetadata | None, cancel: CancelToken
    ) -> IndexOutcome:
        new_hash = item.content_hash
        chunks = self.chunk(item)
        if not chunks:
            self._store.replace_source(self._metadata(item, IndexStatus.INDEXED, 0), [])
            logger.info("Source %s has no text; indexed with 0 chunks", item.id)
            return Indexed(source_id=item.id, chunk_count=0)

        retry_only = (
            previous is not None
            and previous.content_hash == new_hash
            and previous.status is IndexStatus.PARTIALLY_INDEXED
            and bool(previous.failed_chunks)
            and (previous.chunk_window, previous.chunk_overlap)
            == (self._chunker.window, self._chunker.overlap)
        )
        if retry_only:
            pending = set(previous.failed_chunks)
            targets = [c for c in chunks if c.chunk_index in pending]
            logger.info("Source %s: retrying %d failed chunk(s)", item.id, len(targets))
        else:
            targets = chunks

        batch = await self._embed_all(targets, cancel)

        if batch.auth_error is not None:
            return self._fail(item, previous, batch.auth_error, [c.chunk_index for c in chunks])

        if retry_only:
            return self._finish_retry(item, previous, batch)
        return self._finish_full(item, previous, chunks, batch)

    def _mark_indexing(self, item: SourceItem, previous: SourceIndexMetadata | None) -> None:
        """Persist the ``indexing`` state, keeping the previous index bookkeeping."""
        current = previous.status if previous is not None else IndexStatus.UNINDEXED
        check_transition(current, IndexStatus.INDEXING)
        if previous is None:
            marker = self._metadata(item, IndexStatus.INDEXING, 0)
            marker.content_hash = ""
        else:
            marker = replace(previous, status=IndexStatus.INDEXING, last_updated=utcnow())
        self._store.save_metadata(marker)

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def _embed_all(self, targets: list[Chunk], cancel: CancelToken) -> _EmbedBatch:
        batch = _EmbedBatch()
        for position, chunk in enumerate(targets):
            if cancel.cancelled:
                batch.cancelled = True
                batch.failed.extend(c.chunk_index for c in targets[position:])
                break
            try:
                vector = await self._gateway.embed(chunk.text)
            except AuthError as exc:
                batch.auth_error = exc
                break
            except ProviderError as exc:
                logger.warning(
                    "Chunk %d of %s failed to embed: %s", chunk.chunk_index, chunk.source_id, exc
                )
                batch.failed.append(chunk.chunk_index)
                batch.last_error = exc
                continue
            batch.succeeded.append(
                IndexedChunk(
                    chunk=chunk,
                    embedding=EmbeddingRecord(chunk_id=chunk.id, vector=vector, created_at=utcnow()),
                )
            )
        return batch

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _finish_full(
        self,
        item: SourceItem,
        previous: SourceIndexMetadata | None,
        chunks: list[Chunk],
        batch: _EmbedBatch,
    ) -> IndexOutcome:
        if not batch.succeeded:
            if batch.cancelled:
                return self._rollback_cancelled(item, previous)
            error = batch.last_error or ProviderError("no chunk could be embedded")
            return self._fail(item, previous, error, [c.chunk_index for c in chunks])

        failed = sorted(batch.failed)
        status = IndexStatus.PARTIALLY_INDEXED if failed else IndexStatus.INDEXED
        metadata = self._metadata(item, status, len(batch.succeeded), failed)
        self._store.replace_source(metadata, batch.succeeded)
        return self._outcome(item, metadata, batch)

    def _finish_retry(
        self,
        item: SourceItem,
        previous: SourceIndexMetadata,
        batch: _EmbedBatch,
    ) -> IndexOutcome:
        failed = sorted(batch.failed)
        status = IndexStatus.PARTIALLY_INDEXED if failed else IndexStatus.INDEXED
        metadata = self._metadata(
            item, status, previous.chunk_count + len(batch.succeeded), failed
        )
        self._store.merge_source(metadata, batch.succeeded)
        return self._outcome(item, metadata, batch)

    def _outcome(
        self, item: SourceItem, metadata: SourceIndexMetadata, batch: _EmbedBatch
    ) -> IndexOutcome:
        if metadata.status is IndexStatus.INDEXED:
            logger.info("Source %s indexed: %d chunks", item.id, metadata.chunk_count)
            return Indexed(source_id=item.id, chunk_count=metadata.chunk_count)
        logger.info(
            "Source %s partially indexed: %d stored, %d pending retry%s",
            item.id, metadata.chunk_count, len(metadata.failed_chunks),
            " (cancelled)" if batch.cancelled else "",
        )
        return PartiallyIndexed(
            source_id=item.id,
            chunk_count=metadata.chunk_count,
            failed_chunks=metadata.failed_chunks,
            error=PartialIndexError(item.id, metadata.failed_chunks),
            cancelled=batch.cancelled,
        )

    def _fail(
        self,
        item: SourceItem,
        previous: SourceIndexMetadata | None,
        error: ProviderError,
        failed: list[int],
    ) -> Failed:
        """Record a failed pass; any previously stored chunks stay untouched."""
        kept = previous.chunk_count if previous is not None else 0
        metadata = self._metadata(item, IndexStatus.FAILED, kept, failed, error=str(error))
        self._store.save_metadata(metadata)
        logger.error("Source %s failed to index: %s", item.id, error)
        return Failed(source_id=item.id, chunk_count=kept, failed_chunks=failed, error=error)

    def _rollback_cancelled(
        self, item: SourceItem, previous: SourceIndexMetadata | None
    ) -> Failed:
        """Cancelled before any chunk succeeded: restore the previous state."""
        if previous is None:
            restored = self._metadata(item, IndexStatus.UNINDEXED, 0)
            restored.content_hash = ""
        else:
            restored = previous
        self._store.save_metadata(restored)
        logger.info("Indexing of %s cancelled before any chunk was stored", item.id)
        return Failed(
            source_id=item.id,
            status=restored.status,
            chunk_count=restored.chunk_count,
            failed_chunks=list(restored.failed_chunks),
            cancelled=True,
        )

    def _restore_after_error(
        self, item: SourceItem, previous: SourceIndexMetadata | None, exc: BaseException
    ) -> None:
        """Put back the pre-run metadata when a pass dies mid-write.

        Store writes are transactional, so the previous chunk set is intact.
        A first run has nothing to restore and is recorded as failed.
        """
        if previous is not None:
            restored = replace(previous, last_updated=utcnow())
        else:
            restored = self._metadata(
                item, IndexStatus.FAILED, 0, error=str(exc) or type(exc).__name__
            )
            restored.content_hash = ""
        try:
            self._store.save_metadata(restored)
        except StorageError as restore_exc:
            logger.error("Could not restore index state of %s: %s", item.id, restore_exc)
            return
        logger.warning(
            "Indexing of %s aborted (%s); status restored to %s",
            item.id, type(exc).__name__, restored.status.value,
        )

    def _metadata(
        self,
        item: SourceItem,
        status: IndexStatus,
        chunk_count: int,
        failed: list[int] | None = None,
        error: str | None = None,
    ) -> SourceIndexMetadata:
        return SourceIndexMetadata(
            source_id=item.id,
            title=item.title,
            url=item.url,
            content_hash=item.content_hash,
            chunk_count=chunk_count,
            status=status,
            failed_chunks=list(failed or []),
            error=error,
            last_updated=utcnow(),
            chunk_window=self._chunker.window,
            chunk_overlap=self._chunker.overlap,
        )
