"""Tests for the Database connection layer."""

from __future__ import annotations

from pathlib import Path

import pytest

from nestcorpus.db.connection import Database
from nestcorpus.errors import StorageError


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".nestcorpus.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    conn = Database(tmp_path / ".nestcorpus.db").connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / ".nestcorpus.db").connect()
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    conn.close()


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / ".nestcorpus.db").connect()
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    conn.close()


def test_row_factory_set(tmp_path):
    conn = Database(tmp_path / ".nestcorpus.db").connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_in_memory_database():
    db = Database(":memory:")
    assert db.db_path == ":memory:"
    with db as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / ".nestcorpus.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    with pytest.raises(Exception):
        conn.execute("SELECT 1")


def test_path_str_is_converted(tmp_path):
    db = Database(str(tmp_path / ".nestcorpus.db"))
    assert isinstance(db.db_path, Path)


def test_unopenable_path_raises_storage_error(tmp_path):
    missing_dir = tmp_path / "no" / "such" / "dir" / "corpus.db"
    with pytest.raises(StorageError, match="Cannot open database"):
        Database(missing_dir).connect()
