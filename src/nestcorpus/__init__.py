"""nestcorpus: semantic indexing and retrieval over saved items."""

from nestcorpus.db.models import (
    Citation,
    IndexOutcome,
    IndexStats,
    IndexStatus,
    QueryResult,
    SavedItemParts,
    SourceItem,
)
from nestcorpus.engine import CorpusEngine

__all__ = [
    "Citation",
    "CorpusEngine",
    "IndexOutcome",
    "IndexStats",
    "IndexStatus",
    "QueryResult",
    "SavedItemParts",
    "SourceItem",
]
