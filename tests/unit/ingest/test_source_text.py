"""Tests for combining saved-item parts into one indexable text."""

from __future__ import annotations

from nestcorpus.db.models import SavedItemParts, SourceItem, content_hash
from nestcorpus.ingest.source_text import build_combined_text


def test_sections_in_order_separated_by_blank_lines():
    parts = SavedItemParts(
        user_note="my note",
        ai_summary="the summary",
        extracted_text="page body",
        highlights=[("selected bit", "why it matters")],
        attachment_texts=["transcript text"],
    )
    assert build_combined_text("Title", parts) == (
        "Title\n\nmy note\n\nthe summary\n\npage body\n\n"
        "selected bit why it matters\n\ntranscript text"
    )


def test_missing_parts_are_skipped():
    parts = SavedItemParts(extracted_text="only body")
    assert build_combined_text("", parts) == "only body"


def test_highlights_without_note():
    parts = SavedItemParts(highlights=[("first", ""), ("", "note only"), ("", "")])
    assert build_combined_text("T", parts) == "T\n\nfirst\nnote only"


def test_blank_attachments_ignored():
    parts = SavedItemParts(attachment_texts=["  ", "", "caption"])
    assert build_combined_text("T", parts) == "T\n\ncaption"


def test_result_is_normalized():
    parts = SavedItemParts(extracted_text="a   b\r\n\r\n\r\nc")
    assert build_combined_text("T", parts) == "T\n\na b\n\nc"


def test_source_item_from_parts():
    item = SourceItem.from_parts("id-1", "Title", "https://x", SavedItemParts(user_note="n"))
    assert item.combined_text == "Title\n\nn"
    assert item.content_hash == content_hash("Title\n\nn")


def test_source_item_from_parts_title_only():
    item = SourceItem.from_parts("id-1", "Just a title", "")
    assert item.combined_text == "Just a title"
