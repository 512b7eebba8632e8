"""Tests for embedding adapters and vector helpers."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, cast

import pytest
from openai import AsyncOpenAI

from notecopilot.ai.memory.embeddings import (
    LocalEmbeddingProvider,
    OpenAIEmbeddingProvider,
    centroid,
    chunk_list,
    cosine_similarity,
)


class _FakeEmbeddings:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        data = [SimpleNamespace(index=index, embedding=[float(index), 1.0]) for index in range(len(kwargs["input"]))]
        return SimpleNamespace(data=list(reversed(data)))


@pytest.mark.asyncio
async def test_openai_provider_orders_vectors_by_index() -> None:
    embeddings = _FakeEmbeddings()
    provider = OpenAIEmbeddingProvider(
        client=cast(AsyncOpenAI, SimpleNamespace(embeddings=embeddings)),
        model="text-embedding-3-small",
    )

    vectors = await provider.embed_documents(["a", "b", "c"])

    assert vectors == [[0.0, 1.0], [1.0, 1.0], [2.0, 1.0]]
    assert embeddings.calls[0]["model"] == "text-embedding-3-small"
    assert provider.name == "openai:text-embedding-3-small"
    assert await provider.embed_query("q") == [0.0, 1.0]


@pytest.mark.asyncio
async def test_local_provider_accepts_sync_and_async_callables() -> None:
    async def _query(text: str) -> list[int]:
        return [len(text), 0]

    provider = LocalEmbeddingProvider(embed_batch=lambda texts: [[1, 2] for _ in texts], embed_query=_query)

    assert await provider.embed_documents(["x", "y"]) == [[1.0, 2.0], [1.0, 2.0]]
    assert await provider.embed_query("abc") == [3.0, 0.0]


@pytest.mark.asyncio
async def test_local_provider_rejects_non_sequences() -> None:
    provider = LocalEmbeddingProvider(embed_batch=lambda texts: 42)

    with pytest.raises(TypeError):
        await provider.embed_documents(["x"])


def test_cosine_similarity_edge_cases() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_centroid_is_normalized_mean() -> None:
    assert centroid([(3.0, 0.0), (0.0, 4.0)]) == pytest.approx((0.6, 0.8))
    assert centroid([]) == ()
    with pytest.raises(ValueError):
        centroid([(1.0,), (1.0, 2.0)])


def test_chunk_list_splits_into_batches() -> None:
    assert list(chunk_list([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]


@pytest.mark.asyncio
async def test_openai_provider_resolves_client_factory_lazily() -> None:
    embeddings = _FakeEmbeddings()
    resolved: list[int] = []

    def _factory() -> AsyncOpenAI:
        resolved.append(1)
        return cast(AsyncOpenAI, SimpleNamespace(embeddings=embeddings))

    provider = OpenAIEmbeddingProvider(client=_factory, model="text-embedding-3-small")
    assert resolved == []

    assert await provider.embed_documents(["a"]) == [[0.0, 1.0]]
    assert resolved == [1]
