"""End-to-end tests for CorpusEngine over a real SQLite file and fake providers."""

from __future__ import annotations

import pytest
from conftest import FakeEmbedding, FakeGeneration

from nestcorpus.db.models import Indexed, IndexStatus, SourceItem, Unchanged
from nestcorpus.engine import QUERY_FAILED_ANSWER
from nestcorpus.errors import ProviderError, ValidationError
from nestcorpus.rag.synthesizer import NO_MATCH_ANSWER

FOX = SourceItem(
    id="A",
    title="Quick brown fox",
    url="https://example.com/fox",
    combined_text="The quick brown fox jumps over the lazy dog",
)
BREAD = SourceItem(
    id="B",
    title="Bread",
    url="https://example.com/bread",
    combined_text="A recipe for bread: flour, water, oven",
)
FOX_NOTES = SourceItem(
    id="C",
    title="Fox notes",
    url="",
    combined_text="Notes: a fox and a dog, some jumps, and a little python code",
)


@pytest.mark.asyncio
async def test_query_finds_the_relevant_source(make_engine):
    generation = FakeGeneration(answer="The fox jumps over the dog [1].")
    engine = make_engine(generation=generation)
    await engine.index_many([FOX, BREAD])

    result = await engine.query("fox")

    assert [c.source_id for c in result.sources] == ["A"]
    assert result.sources[0].title == "Quick brown fox"
    assert result.sources[0].snippet == FOX.combined_text
    assert result.answer == "The fox jumps over the dog [1]."
    assert result.synthesized is True
    assert 0 < result.confidence <= 0.95
    assert result.processing_time_ms >= 0


@pytest.mark.asyncio
async def test_query_on_empty_index_skips_providers(make_engine):
    embedding = FakeEmbedding()
    generation = FakeGeneration()
    engine = make_engine(embedding, generation)

    result = await engine.query("anything at all")

    assert result.answer == NO_MATCH_ANSWER
    assert result.sources == []
    assert result.confidence == 0.0
    assert embedding.calls == []
    assert generation.calls == []


@pytest.mark.asyncio
async def test_query_without_relevant_match(make_engine):
    generation = FakeGeneration()
    engine = make_engine(generation=generation)
    await engine.index_source(BREAD)

    result = await engine.query("piano melody")

    assert result.answer == NO_MATCH_ANSWER
    assert result.sources == []
    assert generation.calls == []


@pytest.mark.asyncio
async def test_scoped_query_only_cites_scope(make_engine):
    engine = make_engine(generation=FakeGeneration())
    await engine.index_many([FOX, BREAD, FOX_NOTES])

    unscoped = await engine.query("fox")
    scoped = await engine.query("fox", scope=["C"])

    assert {c.source_id for c in unscoped.sources} == {"A", "C"}
    assert [c.source_id for c in scoped.sources] == ["C"]


@pytest.mark.asyncio
async def test_scope_with_unknown_sources_gives_no_match(make_engine):
    embedding = FakeEmbedding()
    engine = make_engine(embedding)
    await engine.index_source(FOX)
    embedding.calls.clear()

    result = await engine.query("fox", scope=["nope"])

    assert result.answer == NO_MATCH_ANSWER
    assert embedding.calls == []


@pytest.mark.asyncio
async def test_query_embedding_failure_is_reported_in_answer(make_engine):
    embedding = FakeEmbedding()
    engine = make_engine(embedding)
    await engine.index_source(FOX)
    embedding.fail_when = lambda text: ProviderError("embedding service down")

    result = await engine.query("fox")

    assert result.answer == QUERY_FAILED_ANSWER
    assert result.sources == []
    assert result.confidence == 0.0


@pytest.mark.asyncio
async def test_empty_query_is_rejected(make_engine):
    engine = make_engine()
    with pytest.raises(ValidationError):
        await engine.query("   ")


@pytest.mark.asyncio
async def test_generation_failure_returns_snippets(make_engine):
    engine = make_engine(generation=FakeGeneration(error=ProviderError("quota")))
    await engine.index_source(FOX)

    result = await engine.query("fox")

    assert result.synthesized is False
    assert FOX.combined_text in result.answer
    assert [c.source_id for c in result.sources] == ["A"]


@pytest.mark.asyncio
async def test_title_change_shows_up_in_citations(make_engine):
    engine = make_engine()
    await engine.index_source(FOX)
    renamed = SourceItem(FOX.id, "Renamed fox", "https://example.com/renamed", FOX.combined_text)

    outcome = await engine.index_source(renamed)
    result = await engine.query("fox")

    assert isinstance(outcome, Unchanged)
    assert result.sources[0].title == "Renamed fox"
    assert result.sources[0].url == "https://example.com/renamed"


@pytest.mark.asyncio
async def test_stats_count_sources_and_chunks(make_engine):
    engine = make_engine()
    assert engine.get_index_stats().total_sources == 0

    await engine.index_many([FOX, BREAD])
    stats = engine.get_index_stats()

    assert stats.total_sources == 2
    assert stats.total_chunks == 2
    assert stats.last_updated is not None


@pytest.mark.asyncio
async def test_remove_source(make_engine):
    engine = make_engine()
    await engine.index_many([FOX, BREAD])

    assert await engine.remove_source("A") is True
    assert await engine.remove_source("A") is False

    result = await engine.query("fox")
    assert result.sources == []
    assert engine.lifecycle.status("A") is IndexStatus.UNINDEXED
    assert engine.get_index_stats().total_sources == 1


@pytest.mark.asyncio
async def test_remove_source_rejects_empty_id(make_engine):
    engine = make_engine()
    with pytest.raises(ValidationError):
        await engine.remove_source("")


@pytest.mark.asyncio
async def test_scheduled_indexing_completes_on_wait_idle(make_engine):
    engine = make_engine()
    engine.schedule_index(FOX)
    engine.schedule_index(BREAD)

    outcomes = await engine.wait_idle()

    assert sorted(o.source_id for o in outcomes) == ["A", "B"]
    assert all(isinstance(o, Indexed) for o in outcomes)
    assert engine.get_index_stats().total_sources == 2


@pytest.mark.asyncio
async def test_engine_as_async_context_manager(make_engine):
    engine = make_engine()
    async with engine as e:
        e.schedule_index(FOX)
    # __aexit__ waited for the scheduled task before closing
    assert engine.lifecycle.is_busy("A") is False


@pytest.mark.asyncio
async def test_index_many_finishes_siblings_before_raising(make_engine):
    engine = make_engine()
    invalid = SourceItem(id="  ", title="", url="", combined_text="fox")

    with pytest.raises(ValidationError):
        await engine.index_many([invalid, FOX, BREAD])

    assert engine.lifecycle.status("A") is IndexStatus.INDEXED
    assert engine.lifecycle.status("B") is IndexStatus.INDEXED
