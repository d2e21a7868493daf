"""Per-source index lifecycle: background tasks, serialization, cancel, delete.

State machine (persisted in source_index.status):

    unindexed → indexing → indexed | partially_indexed | failed
    indexed | partially_indexed | failed → indexing   (reindex / retry pass)
    any → removed                                      (explicit delete)

Work for one source is serialized by a per-source lock, so a second request
for the same source runs after the first and sees its result (and is then
usually a no-op or a retry pass). Different sources index concurrently; the
provider gateway's shared limiter bounds the actual provider traffic.
"""

from __future__ import annotations

import asyncio
from collections import Counter, defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from nestcorpus.db.models import IndexOutcome, IndexStatus, SourceIndexMetadata, SourceItem
from nestcorpus.db.vector_store import VectorStore, utcnow
from nestcorpus.errors import ValidationError
from nestcorpus.ingest.indexer import CancelToken, Indexer
from nestcorpus.logging_config import get_logger

logger = get_logger(__name__)


class IndexLifecycleManager:
    def __init__(self, store: VectorStore, indexer: Indexer) -> None:
        self._store = store
        self._indexer = indexer
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: Counter[str] = Counter()
        self._tokens: dict[str, CancelToken] = {}
        self._tasks: defaultdict[str, set[asyncio.Task[IndexOutcome]]] = defaultdict(set)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index(self, item: SourceItem, cancel: CancelToken | None = None) -> IndexOutcome:
        """Index *item* now (awaiting the result), serialized per source."""
        if not item.id or not item.id.strip():
            raise ValidationError("SourceItem.id must be a non-empty string")
        token = cancel or CancelToken()
        async with self._source_lock(item.id):
            self._tokens[item.id] = token
            try:
                return await self._indexer.index(item, token)
            finally:
                if self._tokens.get(item.id) is token:
                    del self._tokens[item.id]

    @asynccontextmanager
    async def _source_lock(self, source_id: str) -> AsyncIterator[None]:
        """Hold the per-source lock; drop it once nobody holds or awaits it."""
        self._lock_users[source_id] += 1
        try:
            async with self._locks[source_id]:
                yield
        finally:
            self._lock_users[source_id] -= 1
            if self._lock_users[source_id] <= 0:
                del self._lock_users[source_id]
                self._locks.pop(source_id, None)

    def schedule(self, item: SourceItem) -> asyncio.Task[IndexOutcome]:
        """Index *item* in the background. Must be called from a running loop."""
        if not item.id or not item.id.strip():
            raise ValidationError("SourceItem.id must be a non-empty string")
        task = asyncio.create_task(self.index(item), name=f"index:{item.id}")
        self._tasks[item.id].add(task)
        task.add_done_callback(lambda t, source_id=item.id: self._task_done(source_id, t))
        return task

    def cancel(self, source_id: str) -> bool:
        """Signal the in-flight indexing run for *source_id* to stop.

        Returns:
            True if a run was in flight.
        """
        token = self._tokens.get(source_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancellation requested for %s", source_id)
        return True

    async def wait_idle(self) -> list[IndexOutcome]:
        """Wait for every scheduled background task; return their outcomes."""
        tasks = [t for group in self._tasks.values() for t in group]
        if not tasks:
            return []
        results = await asyncio.gather(*tasks, return_exceptions=True)
        outcomes: list[IndexOutcome] = []
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                continue
            if isinstance(result, BaseException):
                logger.error("Background indexing task failed: %s", result)
            else:
                outcomes.append(result)
        return outcomes

    def _task_done(self, source_id: str, task: asyncio.Task[IndexOutcome]) -> None:
        group = self._tasks.get(source_id)
        if group is not None:
            group.discard(task)
            if not group:
                del self._tasks[source_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Indexing %s raised: %s", source_id, task.exception())

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def remove(self, source_id: str) -> bool:
        """Stop any in-flight run, then delete the source's chunks, embeddings and metadata.

        Returns:
            True if the source was known to the index.
        """
        self.cancel(source_id)
        pending = [t for t in self._tasks.get(source_id, ()) if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        async with self._source_lock(source_id):
            known = self._store.get_metadata(source_id) is not None
            deleted = self._store.delete_by_source(source_id)
        logger.info("Removed %s (%d chunks)", source_id, deleted)
        return known or deleted > 0

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def status(self, source_id: str) -> IndexStatus:
        metadata = self._store.get_metadata(source_id)
        return metadata.status if metadata is not None else IndexStatus.UNINDEXED

    def is_busy(self, source_id: str) -> bool:
        return source_id in self._tokens

    def pending_retries(self) -> list[SourceIndexMetadata]:
        """Sources whose last pass left work to redo."""
        return self._store.list_metadata(
            [IndexStatus.PARTIALLY_INDEXED, IndexStatus.FAILED]
        )

    def recover_interrupted(self) -> int:
        """Mark rows stuck in ``indexing`` (process died mid-run) as failed.

        Failed sources get a full pass on the next index request; their
        previously stored chunks remain queryable meanwhile.

        Returns:
            Number of rows recovered.
        """
        stale = [
            m
            for m in self._store.list_metadata([IndexStatus.INDEXING])
            if not self.is_busy(m.source_id)
        ]
        for metadata in stale:
            metadata.status = IndexStatus.FAILED
            metadata.error = "interrupted"
            metadata.last_updated = utcnow()
            self._store.save_metadata(metadata)
        if stale:
            logger.warning("Recovered %d interrupted indexing run(s)", len(stale))
        return len(stale)
