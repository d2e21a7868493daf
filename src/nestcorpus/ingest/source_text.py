"""Combine the text parts of a saved item into one indexable document."""

from __future__ import annotations

from nestcorpus.db.models import SavedItemParts
from nestcorpus.ingest.chunker import normalize_text


def build_combined_text(title: str, parts: SavedItemParts) -> str:
    """Join title, note, summary, page text, highlights and attachment text.

    Sections are separated by blank lines; missing parts are skipped. The
    result is normalized so chunk offsets are stable across ingests.
    """
    sections = [title, parts.user_note, parts.ai_summary, parts.extracted_text]

    highlight_lines = [
        f"{selected} {note}".strip() for selected, note in parts.highlights if selected or note
    ]
    if highlight_lines:
        sections.append("\n".join(highlight_lines))

    attachments = [t for t in parts.attachment_texts if t.strip()]
    if attachments:
        sections.append("\n".join(attachments))

    return normalize_text("\n\n".join(s for s in sections if s and s.strip()))
