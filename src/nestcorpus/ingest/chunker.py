"""Fixed-window character chunker with overlap.

Windows are ``[offset, offset + window)``; the offset advances by
``window - overlap`` until it reaches the end of the text. Boundaries depend
only on (text, window, overlap), which keeps reindexing idempotent and lets
a retry pass address chunks by index.
"""

from __future__ import annotations

import re

from nestcorpus.db.models import Chunk
from nestcorpus.errors import ValidationError

DEFAULT_WINDOW = 1000
DEFAULT_OVERLAP = 200

_INLINE_WS = re.compile(r"[ \t\f\v]+")
_MANY_NEWLINES = re.compile(r"\n{3,}")


def normalize_text(text: str) -> str:
    """Canonical form that chunk offsets refer to.

    Unifies line endings, collapses runs of inline whitespace to one space
    and blank-line runs to a single blank line, and strips the ends.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _INLINE_WS.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _MANY_NEWLINES.sub("\n\n", text)
    return text.strip()


class TextChunker:
    """Split normalized text into overlapping fixed-size character windows.

    Args:
        window: Characters per chunk (W).
        overlap: Characters shared by consecutive chunks (O), ``0 <= O < W``.
    """

    def __init__(self, window: int = DEFAULT_WINDOW, overlap: int = DEFAULT_OVERLAP) -> None:
        if window < 1:
            raise ValidationError("window must be >= 1")
        if not 0 <= overlap < window:
            raise ValidationError(f"overlap must be in [0, window), got {overlap}")
        self.window = window
        self.overlap = overlap

    @property
    def step(self) -> int:
        return self.window - self.overlap

    def chunk(self, source_id: str, text: str) -> list[Chunk]:
        """Split *text* into Chunk objects for *source_id*.

        Returns:
            Ordered chunks with contiguous ``chunk_index`` from 0; an empty
            list for empty or whitespace-only text.
        """
        if not text.strip():
            return []

        chunks: list[Chunk] = []
        length = len(text)
        offset = 0
        while offset < length:
            end = min(offset + self.window, length)
            chunks.append(
                Chunk(
                    source_id=source_id,
                    chunk_index=len(chunks),
                    text=text[offset:end],
                    start_offset=offset,
                    end_offset=end,
                )
            )
            if end >= length:
                break
            offset += self.step
        return chunks
