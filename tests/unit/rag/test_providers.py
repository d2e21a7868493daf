"""Tests for the LiteLLM-backed providers and prompt construction."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from nestcorpus.db.models import Chunk
from nestcorpus.errors import AuthError
from nestcorpus.rag.providers import (
    LiteLLMEmbeddingProvider,
    LiteLLMGenerationProvider,
    build_context_block,
    build_messages,
)


def _chunks() -> list[Chunk]:
    return [
        Chunk("a", 0, "Foxes are quick.", 0, 16),
        Chunk("b", 3, "Dogs are lazy.", 2400, 2414),
    ]


def test_context_block_numbers_passages():
    assert build_context_block(_chunks()) == "[1] Foxes are quick.\n\n[2] Dogs are lazy."


def test_messages_ground_the_answer():
    messages = build_messages("Who is quick?", _chunks())
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "ONLY" in messages[0]["content"]
    assert "[2] Dogs are lazy." in messages[1]["content"]
    assert messages[1]["content"].endswith("Question: Who is quick?")


@pytest.mark.asyncio
async def test_embedding_provider_checks_key_before_calling(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = LiteLLMEmbeddingProvider("openai/text-embedding-3-small")
    with patch("nestcorpus.rag.providers.aembed", new=AsyncMock()) as mock_embed:
        with pytest.raises(AuthError):
            await provider.embed("text")
    mock_embed.assert_not_called()


@pytest.mark.asyncio
async def test_embedding_provider_delegates(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    provider = LiteLLMEmbeddingProvider("openai/text-embedding-3-small", timeout=9.0)
    with patch(
        "nestcorpus.rag.providers.aembed", new=AsyncMock(return_value=[1.0, 2.0])
    ) as mock_embed:
        assert await provider.embed("hello") == [1.0, 2.0]
    mock_embed.assert_awaited_once_with("openai/text-embedding-3-small", "hello", timeout=9.0)


@pytest.mark.asyncio
async def test_generation_provider_strips_answer(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    provider = LiteLLMGenerationProvider("openai/gpt-4o-mini", max_tokens=123, temperature=0.1)
    with patch(
        "nestcorpus.rag.providers.acomplete", new=AsyncMock(return_value="  Foxes. [1]\n")
    ) as mock_complete:
        answer = await provider.synthesize("Who is quick?", _chunks())

    assert answer == "Foxes. [1]"
    kwargs = mock_complete.call_args.kwargs
    assert kwargs["max_tokens"] == 123
    assert kwargs["temperature"] == 0.1
