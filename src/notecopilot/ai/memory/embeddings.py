"""Embedding provider adapters and vector helpers."""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from typing import Any, Awaitable, Callable, Iterable, Protocol, Sequence, TypeVar

from openai import AsyncOpenAI

LOGGER = logging.getLogger(__name__)
Vector = tuple[float, ...]
_T = TypeVar("_T")


class EmbeddingProvider(Protocol):
    """Protocol implemented by embedding backends."""

    name: str
    max_batch_size: int

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        """Return embeddings for document passages."""

    async def embed_query(self, text: str) -> Sequence[float]:
        """Return embedding vector for a query string."""


class AsyncRateLimiter:
    """Simple asynchronous rate limiter using a minimum interval."""

    def __init__(self, *, rate_per_minute: int | None = None) -> None:
        self._interval = 0.0
        self._lock = asyncio.Lock()
        self._last_acquire = 0.0
        if rate_per_minute and rate_per_minute > 0:
            self._interval = 60.0 / float(rate_per_minute)

    async def acquire(self, tokens: int = 1) -> None:
        if self._interval <= 0 or tokens <= 0:
            return
        wait_time = self._interval * max(1, tokens)
        async with self._lock:
            now = time.monotonic()
            remaining = wait_time - (now - self._last_acquire)
            if remaining > 0:
                await asyncio.sleep(remaining)
            self._last_acquire = time.monotonic()


class LocalEmbeddingProvider:
    """Embedding provider backed by synchronous or async callables."""

    def __init__(
        self,
        *,
        embed_batch: Callable[[Sequence[str]], Sequence[Sequence[float]] | Awaitable[Sequence[Sequence[float]]]],
        embed_query: Callable[[str], Sequence[float] | Awaitable[Sequence[float]]] | None = None,
        name: str = "local",
        max_batch_size: int = 32,
    ) -> None:
        self._embed_batch = embed_batch
        self._embed_query = embed_query
        self.name = name
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        return _normalize_vector_batch(await _maybe_await(self._embed_batch(texts)))

    async def embed_query(self, text: str) -> Sequence[float]:
        if self._embed_query is not None:
            return _normalize_vector(await _maybe_await(self._embed_query(text)))
        vectors = await self.embed_documents([text])
        return vectors[0]


class OpenAIEmbeddingProvider:
    """Embedding provider that wraps :class:`openai.AsyncOpenAI`."""

    def __init__(
        self,
        *,
        client: AsyncOpenAI | Callable[[], AsyncOpenAI],
        model: str,
        name: str | None = None,
        max_batch_size: int = 16,
        requests_per_minute: int | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._rate_limiter = AsyncRateLimiter(rate_per_minute=requests_per_minute)
        self.name = name or f"openai:{model}"
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        await self._rate_limiter.acquire()
        response = await self._resolve_client().embeddings.create(model=self._model, input=list(texts))
        data = sorted(response.data, key=lambda item: getattr(item, "index", 0))
        return [list(getattr(item, "embedding", [])) for item in data]

    async def embed_query(self, text: str) -> Sequence[float]:
        vectors = await self.embed_documents([text])
        return vectors[0]

    def _resolve_client(self) -> AsyncOpenAI:
        # A callable defers SDK client creation to the first request.
        if callable(self._client):
            return self._client()
        return self._client


def cosine_similarity(lhs: Sequence[float], rhs: Sequence[float]) -> float:
    if not lhs or not rhs:
        return 0.0
    if len(lhs) != len(rhs):
        return 0.0
    dot = sum(a * b for a, b in zip(lhs, rhs))
    left = math.sqrt(sum(a * a for a in lhs))
    right = math.sqrt(sum(b * b for b in rhs))
    if left == 0 or right == 0:
        return 0.0
    return dot / (left * right)


def centroid(vectors: Sequence[Sequence[float]]) -> Vector:
    """Return the L2-normalized mean of *vectors*."""

    if not vectors:
        return ()
    dims = len(vectors[0])
    totals = [0.0] * dims
    for vector in vectors:
        if len(vector) != dims:
            raise ValueError("Embedding vectors must share one dimensionality")
        for index, value in enumerate(vector):
            totals[index] += float(value)
    norm = math.sqrt(sum(value * value for value in totals))
    if norm == 0:
        return tuple(totals)
    return tuple(value / norm for value in totals)


def chunk_list(items: Sequence[_T], size: int) -> Iterable[list[_T]]:
    chunk: list[_T] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _normalize_vector_batch(value: Any) -> list[list[float]]:
    if not isinstance(value, Sequence):
        raise TypeError("Embedding batch must be a sequence")
    return [_normalize_vector(vector) for vector in value]


def _normalize_vector(value: Any) -> list[float]:
    if isinstance(value, Sequence):
        return [float(component) for component in value]
    raise TypeError("Embedding vector must be a sequence")


__all__ = [
    "AsyncRateLimiter",
    "EmbeddingProvider",
    "LocalEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "Vector",
    "centroid",
    "chunk_list",
    "cosine_similarity",
]
