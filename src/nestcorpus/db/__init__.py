"""Corpus database layer."""

from nestcorpus.db.connection import Database
from nestcorpus.db.migrations import MIGRATIONS, run_migrations
from nestcorpus.db.schema import initialize
from nestcorpus.db.vector_store import VectorStore
from nestcorpus.db.vectors import cosine_similarity, deserialize_vector, serialize_vector

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "VectorStore",
    "cosine_similarity",
    "deserialize_vector",
    "serialize_vector",
]
