"""Tests for citation building, confidence and the generation fallback."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import DIMS, FakeGeneration, make_gateway

from nestcorpus.db.models import Chunk, IndexStatus, ScoredChunk, SourceIndexMetadata
from nestcorpus.db.vector_store import VectorStore
from nestcorpus.errors import ProviderError
from nestcorpus.rag.synthesizer import (
    FALLBACK_HEADER,
    NO_MATCH_ANSWER,
    AnswerSynthesizer,
    SynthesizerConfig,
    compute_confidence,
    make_snippet,
)

_NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _scored(source_id: str, similarity: float, text: str = "", idx: int = 0) -> ScoredChunk:
    text = text or f"Passage from {source_id}"
    return ScoredChunk(Chunk(source_id, idx, text, 0, len(text)), similarity, _NOW)


@pytest.fixture
def store(tmp_db) -> VectorStore:
    s = VectorStore(tmp_db, dimensions=DIMS)
    s.save_metadata(
        SourceIndexMetadata(
            source_id="fox",
            title="Quick brown fox",
            url="https://example.com/fox",
            status=IndexStatus.INDEXED,
            last_updated=_NOW,
        )
    )
    s.save_metadata(
        SourceIndexMetadata(source_id="untitled", status=IndexStatus.INDEXED, last_updated=_NOW)
    )
    return s


# ------------------------------------------------------------------
# Citations
# ------------------------------------------------------------------


def test_citations_one_per_source_in_best_first_order(store):
    synth = AnswerSynthesizer(store, make_gateway())
    citations = synth.build_citations(
        [
            _scored("fox", 0.91, "best fox chunk", 0),
            _scored("untitled", 0.85),
            _scored("fox", 0.80, "weaker fox chunk", 1),
        ]
    )
    assert [c.source_id for c in citations] == ["fox", "untitled"]
    assert citations[0].snippet == "best fox chunk"
    assert citations[0].relevance_score == pytest.approx(0.91)
    assert citations[0].title == "Quick brown fox"
    assert citations[0].url == "https://example.com/fox"


def test_citation_title_falls_back_to_source_id(store):
    synth = AnswerSynthesizer(store, make_gateway())
    (citation,) = synth.build_citations([_scored("untitled", 0.8)])
    assert citation.title == "Saved item untitled"
    assert citation.url == ""


def test_citation_for_source_without_metadata(store):
    synth = AnswerSynthesizer(store, make_gateway())
    (citation,) = synth.build_citations([_scored("ghost", 0.8)])
    assert citation.title == "Saved item ghost"


def test_snippet_is_truncated(store):
    synth = AnswerSynthesizer(store, make_gateway(), SynthesizerConfig(snippet_chars=10))
    (citation,) = synth.build_citations([_scored("fox", 0.9, "abcdefghijklmnop")])
    assert citation.snippet == "abcdefghij..."


# ------------------------------------------------------------------
# make_snippet / compute_confidence
# ------------------------------------------------------------------


def test_make_snippet_short_text_unchanged():
    assert make_snippet("  short text \n", 200) == "short text"


def test_make_snippet_cuts_at_limit():
    snippet = make_snippet("x" * 250, 200)
    assert snippet == "x" * 200 + "..."


def test_confidence_zero_without_matches():
    assert compute_confidence([], 5) == 0.0


def test_confidence_grows_with_filled_slots():
    one = compute_confidence([_scored("a", 0.8)], 5)
    three = compute_confidence([_scored(s, 0.8) for s in "abc"], 5)
    assert one == pytest.approx(0.16)
    assert three == pytest.approx(0.48)


def test_confidence_is_capped():
    full = [_scored(s, 1.0) for s in "abcde"]
    assert compute_confidence(full, 5) == pytest.approx(0.95)


# ------------------------------------------------------------------
# synthesize()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_synthesize_without_matches(store):
    generation = FakeGeneration()
    synth = AnswerSynthesizer(store, make_gateway(generation=generation))
    result = await synth.synthesize("anything", [])
    assert result.answer == NO_MATCH_ANSWER
    assert result.sources == []
    assert result.confidence == 0.0
    assert generation.calls == []


@pytest.mark.asyncio
async def test_synthesize_uses_generation(store):
    generation = FakeGeneration(answer="Foxes are quick [1].")
    synth = AnswerSynthesizer(store, make_gateway(generation=generation))
    retrieved = [_scored("fox", 0.9)]
    result = await synth.synthesize("what about foxes?", retrieved)

    assert result.synthesized is True
    assert result.answer == "Foxes are quick [1]."
    assert [c.source_id for c in result.sources] == ["fox"]
    assert generation.calls[0][0] == "what about foxes?"
    assert generation.calls[0][1] == [retrieved[0].chunk]


@pytest.mark.asyncio
async def test_synthesize_falls_back_when_generation_fails(store):
    generation = FakeGeneration(error=ProviderError("model unavailable"))
    synth = AnswerSynthesizer(store, make_gateway(generation=generation))
    result = await synth.synthesize("foxes?", [_scored("fox", 0.9, "The fox jumps.")])

    assert result.synthesized is False
    assert result.answer.startswith(FALLBACK_HEADER)
    assert "[1] Quick brown fox: The fox jumps." in result.answer
    assert result.confidence > 0
    assert len(result.sources) == 1


@pytest.mark.asyncio
async def test_synthesize_falls_back_when_generation_disabled(store):
    synth = AnswerSynthesizer(store, make_gateway())
    result = await synth.synthesize("foxes?", [_scored("fox", 0.9)])
    assert result.synthesized is False
    assert result.answer.startswith(FALLBACK_HEADER)


@pytest.mark.asyncio
async def test_generation_sees_every_retrieved_chunk(store):
    generation = FakeGeneration()
    synth = AnswerSynthesizer(store, make_gateway(generation=generation))
    retrieved = [_scored("fox", 0.9, "first", 0), _scored("fox", 0.8, "second", 1)]

    result = await synth.synthesize("foxes?", retrieved)

    assert len(result.sources) == 1
    assert [c.text for c in generation.calls[0][1]] == ["first", "second"]
