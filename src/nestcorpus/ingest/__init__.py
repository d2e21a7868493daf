"""nestcorpus ingest pipeline: text combination, chunking, indexing, lifecycle."""

from nestcorpus.ingest.chunker import TextChunker, normalize_text
from nestcorpus.ingest.indexer import CancelToken, Indexer
from nestcorpus.ingest.lifecycle import IndexLifecycleManager
from nestcorpus.ingest.source_text import build_combined_text

__all__ = [
    "CancelToken",
    "IndexLifecycleManager",
    "Indexer",
    "TextChunker",
    "build_combined_text",
    "normalize_text",
]
