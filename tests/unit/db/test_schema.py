"""Tests for database schema initialization."""

from __future__ import annotations

import sqlite3

import pytest

from nestcorpus.db.schema import CURRENT_VERSION, initialize
from nestcorpus.errors import StorageError


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] for row in rows}


def test_source_index_columns(tmp_db):
    assert _table_columns(tmp_db, "source_index") == {
        "source_id",
        "title",
        "url",
        "content_hash",
        "chunk_count",
        "status",
        "failed_chunks",
        "error",
        "last_updated",
    }


def test_chunks_columns(tmp_db):
    assert _table_columns(tmp_db, "chunks") == {
        "id",
        "source_id",
        "chunk_index",
        "text",
        "start_offset",
        "end_offset",
    }


def test_embeddings_columns(tmp_db):
    assert _table_columns(tmp_db, "embeddings") == {"chunk_id", "embedding", "created_at"}


def test_schema_version_recorded(tmp_db):
    version = tmp_db.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION


def test_initialize_is_idempotent(tmp_db):
    initialize(tmp_db)
    count = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == CURRENT_VERSION


def test_embedding_cascade_on_chunk_delete(tmp_db):
    tmp_db.execute(
        "INSERT INTO chunks (id, source_id, chunk_index, text, start_offset, end_offset) "
        "VALUES ('a_chunk_0', 'a', 0, 'x', 0, 1)"
    )
    tmp_db.execute(
        "INSERT INTO embeddings (chunk_id, embedding, created_at) VALUES ('a_chunk_0', x'00', 'now')"
    )
    tmp_db.execute("DELETE FROM chunks WHERE id = 'a_chunk_0'")
    assert tmp_db.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0] == 0


def test_initialize_wraps_sqlite_errors(tmp_path):
    conn = sqlite3.connect(tmp_path / "x.db")
    conn.close()
    with pytest.raises(StorageError, match="Schema migration failed"):
        initialize(conn)
