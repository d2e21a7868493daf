"""Vector store: chunks, embedding records, and per-source index metadata.

Single interface over the corpus database. Chunks are indexed by source_id,
so enumeration and deletion for one source touch only that source's rows.
Multi-row writes for a source run inside one transaction, so concurrent
readers see either the complete old chunk set or the complete new one.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from nestcorpus.db.models import (
    Chunk,
    EmbeddingRecord,
    IndexedChunk,
    IndexStats,
    IndexStatus,
    SourceIndexMetadata,
)
from nestcorpus.db.vectors import deserialize_vector, serialize_vector
from nestcorpus.errors import StorageError, ValidationError

# SQLite's default limit on host parameters is 999 on older builds.
_IN_BATCH = 500

_SELECT_INDEXED = """
    SELECT c.id, c.source_id, c.chunk_index, c.text, c.start_offset, c.end_offset,
           e.embedding, e.created_at
    FROM chunks c JOIN embeddings e ON e.chunk_id = c.id
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VectorStore:
    """Data access layer for the corpus index.

    Wraps an open sqlite3.Connection (sqlite-vec loaded, schema initialised).
    The connection is owned by the caller and must be closed after use.

    Args:
        conn: Open database connection.
        dimensions: Expected embedding dimension D. When None, D is taken
            from the first stored vector.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int | None = None) -> None:
        if dimensions is not None and dimensions < 1:
            raise ValidationError(f"dimensions must be >= 1, got {dimensions}")
        self._conn = conn
        self._dimensions = dimensions

    # ------------------------------------------------------------------
    # Embedding records
    # ------------------------------------------------------------------

    def put(self, chunk: Chunk, record: EmbeddingRecord) -> None:
        """Insert or replace one chunk and its current embedding."""
        entries = [IndexedChunk(chunk=chunk, embedding=record)]
        self._check_entries(entries)
        with self._guard("put"), self._conn:
            self._write_entries(entries)

    def get_all_by_source(self, source_id: str) -> list[IndexedChunk]:
        """Return every stored chunk of *source_id*, in chunk_index order."""
        with self._guard("get_all_by_source"):
            rows = self._conn.execute(
                _SELECT_INDEXED + " WHERE c.source_id = ? ORDER BY c.chunk_index",
                (source_id,),
            ).fetchall()
        return [_row_to_indexed(r) for r in rows]

    def get_all_by_sources(self, source_ids: Iterable[str]) -> list[IndexedChunk]:
        """Return stored chunks for every id in *source_ids* (via the source index)."""
        ids = sorted(set(source_ids))
        results: list[IndexedChunk] = []
        with self._guard("get_all_by_sources"):
            for start in range(0, len(ids), _IN_BATCH):
                batch = ids[start : start + _IN_BATCH]
                placeholders = ",".join("?" * len(batch))
                rows = self._conn.execute(
                    _SELECT_INDEXED
                    + f" WHERE c.source_id IN ({placeholders})"
                    " ORDER BY c.source_id, c.chunk_index",
                    batch,
                ).fetchall()
                results.extend(_row_to_indexed(r) for r in rows)
        return results

    def get_all(self) -> list[IndexedChunk]:
        with self._guard("get_all"):
            rows = self._conn.execute(
                _SELECT_INDEXED + " ORDER BY c.source_id, c.chunk_index"
            ).fetchall()
        return [_row_to_indexed(r) for r in rows]

    def count(self, source_id: str | None = None) -> int:
        """Return the number of embedded chunks, overall or for one source."""
        with self._guard("count"):
            if source_id is None:
                row = self._conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM embeddings e JOIN chunks c ON c.id = e.chunk_id "
                    "WHERE c.source_id = ?",
                    (source_id,),
                ).fetchone()
        return row[0]

    def dimensions(self) -> int | None:
        """Return the store's vector dimension D, or None if nothing is stored yet."""
        if self._dimensions is not None:
            return self._dimensions
        with self._guard("dimensions"):
            row = self._conn.execute(
                "SELECT vec_length(embedding) FROM embeddings LIMIT 1"
            ).fetchone()
        return row[0] if row else None

    def delete_by_source(self, source_id: str) -> int:
        """Delete all chunks, embeddings, and metadata of *source_id* atomically.

        Returns:
            Number of chunks deleted.
        """
        with self._guard("delete_by_source"), self._conn:
            deleted = self._delete_chunks(source_id)
            self._conn.execute("DELETE FROM source_index WHERE source_id = ?", (source_id,))
        return deleted

    def replace_source(
        self, metadata: SourceIndexMetadata, entries: list[IndexedChunk]
    ) -> None:
        """Swap the source's chunk set for *entries* and save *metadata*, in one transaction."""
        self._check_entries(entries)
        with self._guard("replace_source"), self._conn:
            self._delete_chunks(metadata.source_id)
            self._write_entries(entries)
            self._upsert_metadata(metadata)

    def merge_source(
        self, metadata: SourceIndexMetadata, entries: list[IndexedChunk]
    ) -> None:
        """Add *entries* to the source's existing chunks and save *metadata*, in one transaction."""
        self._check_entries(entries)
        with self._guard("merge_source"), self._conn:
            self._write_entries(entries)
            self._upsert_metadata(metadata)

    # ------------------------------------------------------------------
    # Source index metadata
    # ------------------------------------------------------------------

    def get_metadata(self, source_id: str) -> SourceIndexMetadata | None:
        with self._guard("get_metadata"):
            row = self._conn.execute(
                "SELECT * FROM source_index WHERE source_id = ?", (source_id,)
            ).fetchone()
        return _row_to_metadata(row) if row else None

    def list_metadata(self, statuses: Iterable[IndexStatus] | None = None) -> list[SourceIndexMetadata]:
        """Return metadata rows, optionally filtered by status, newest first."""
        sql = "SELECT * FROM source_index"
        params: list[str] = []
        if statuses is not None:
            values = [s.value for s in statuses]
            sql += f" WHERE status IN ({','.join('?' * len(values))})"
            params = values
        sql += " ORDER BY last_updated DESC"
        with self._guard("list_metadata"):
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_metadata(r) for r in rows]

    def save_metadata(self, metadata: SourceIndexMetadata) -> None:
        with self._guard("save_metadata"), self._conn:
            self._upsert_metadata(metadata)

    def update_details(self, source_id: str, title: str, url: str) -> None:
        """Refresh the denormalized title/url without touching index state."""
        with self._guard("update_details"), self._conn:
            self._conn.execute(
                "UPDATE source_index SET title = ?, url = ? WHERE source_id = ?",
                (title, url, source_id),
            )

    def stats(self) -> IndexStats:
        """Corpus totals: embedded chunks, queryable sources, most recent update."""
        searchable = (IndexStatus.INDEXED.value, IndexStatus.PARTIALLY_INDEXED.value)
        with self._guard("stats"):
            total_chunks = self._conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0]
            row = self._conn.execute(
                "SELECT COUNT(*), MAX(last_updated) FROM source_index WHERE status IN (?, ?)",
                searchable,
            ).fetchone()
        last = datetime.fromisoformat(row[1]) if row[1] else None
        return IndexStats(total_chunks=total_chunks, total_sources=row[0], last_updated=last)

    # ------------------------------------------------------------------
    # Internals (callers hold the transaction)
    # ------------------------------------------------------------------

    def _delete_chunks(self, source_id: str) -> int:
        self._conn.execute(
            "DELETE FROM embeddings WHERE chunk_id IN "
            "(SELECT id FROM chunks WHERE source_id = ?)",
            (source_id,),
        )
        cur = self._conn.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
        return cur.rowcount

    def _write_entries(self, entries: list[IndexedChunk]) -> None:
        for entry in entries:
            chunk = entry.chunk
            self._conn.execute(
                """
                INSERT OR REPLACE INTO chunks
                    (id, source_id, chunk_index, text, start_offset, end_offset)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    chunk.id,
                    chunk.source_id,
                    chunk.chunk_index,
                    chunk.text,
                    chunk.start_offset,
                    chunk.end_offset,
                ),
            )
            self._conn.execute(
                "INSERT OR REPLACE INTO embeddings (chunk_id, embedding, created_at) VALUES (?, ?, ?)",
                (
                    chunk.id,
                    serialize_vector(entry.embedding.vector),
                    entry.embedding.created_at.isoformat(),
                ),
            )

    def _upsert_metadata(self, metadata: SourceIndexMetadata) -> None:
        last_updated = metadata.last_updated or utcnow()
        self._conn.execute(
            """
            INSERT INTO source_index
                (source_id, title, url, content_hash, chunk_count, status,
                 failed_chunks, error, last_updated, chunk_window, chunk_overlap)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(source_id) DO UPDATE SET
                title = excluded.title,
                url = excluded.url,
                content_hash = excluded.content_hash,
                chunk_count = excluded.chunk_count,
                status = excluded.status,
                failed_chunks = excluded.failed_chunks,
                error = excluded.error,
                last_updated = excluded.last_updated,
                chunk_window = excluded.chunk_window,
                chunk_overlap = excluded.chunk_overlap
            """,
            (
                metadata.source_id,
                metadata.title,
                metadata.url,
                metadata.content_hash,
                metadata.chunk_count,
                metadata.status.value,
                json.dumps(sorted(metadata.failed_chunks)),
                metadata.error,
                last_updated.isoformat(),
                metadata.chunk_window,
                metadata.chunk_overlap,
            ),
        )

    def _check_entries(self, entries: list[IndexedChunk]) -> None:
        """Reject entries that would break the one-dimension-per-store invariant."""
        if not entries:
            return
        expected = self.dimensions() or len(entries[0].embedding.vector)
        for entry in entries:
            if entry.embedding.chunk_id != entry.chunk.id:
                raise ValidationError(
                    f"Embedding for '{entry.embedding.chunk_id}' does not belong to "
                    f"chunk '{entry.chunk.id}'"
                )
            got = len(entry.embedding.vector)
            if got == 0 or got != expected:
                raise ValidationError(
                    f"Vector dimension mismatch for '{entry.chunk.id}': "
                    f"expected {expected}, got {got}"
                )

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StorageError(f"Vector store {operation} failed: {exc}") from exc


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_indexed(row: sqlite3.Row) -> IndexedChunk:
    chunk = Chunk(
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
    )
    return IndexedChunk(
        chunk=chunk,
        embedding=EmbeddingRecord(
            chunk_id=row["id"],
            vector=deserialize_vector(row["embedding"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        ),
    )


def _row_to_metadata(row: sqlite3.Row) -> SourceIndexMetadata:
    return SourceIndexMetadata(
        source_id=row["source_id"],
        title=row["title"],
        url=row["url"],
        content_hash=row["content_hash"],
        chunk_count=row["chunk_count"],
        status=IndexStatus(row["status"]),
        failed_chunks=json.loads(row["failed_chunks"]),
        error=row["error"],
        last_updated=datetime.fromisoformat(row["last_updated"]),
        chunk_window=row["chunk_window"],
        chunk_overlap=row["chunk_overlap"],
    )
