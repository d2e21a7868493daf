"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from nestcorpus.db.migrations import MIGRATIONS, run_migrations
from nestcorpus.errors import StorageError

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    try:
        run_migrations(conn)
    except sqlite3.Error as exc:
        raise StorageError(f"Schema migration failed: {exc}") from exc
