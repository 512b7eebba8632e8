"""Content-addressed cache of embedded documents.

Records are keyed by the SHA-256 of whitespace-normalized content, so the same
note text never yields two records and never pays for embedding twice. The
cache is process-wide; every mutating call is serialized through a single
``asyncio.Lock`` so concurrent first access of one document resolves to one
record.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from ...errors import ErrorCode, InputError, StoreError
from ...services.telemetry import emit
from .embeddings import EmbeddingProvider, centroid, chunk_list
from .records import DocumentRecord, Passage, content_hash, normalize_content, now_ms
from .store import DocumentRecordStore

__all__ = [
    "CacheStats",
    "DocumentCache",
    "split_passages",
]

LOGGER = logging.getLogger(__name__)
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_MS_PER_DAY = 24 * 60 * 60 * 1000
_STORE_ERRORS = (sqlite3.Error, OSError, ValueError)


@dataclass(slots=True)
class CacheStats:
    """Counters describing cache behaviour since construction."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    clears: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "clears": self.clears,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }


class DocumentCache:
    """Deduplicated, TTL-bounded store of embedded document content.

    Example:
        >>> cache = DocumentCache(InMemoryDocumentStore(), provider)
        >>> record = await cache.get_or_create(note_text, source_name="Paris.md")
        >>> assert (await cache.get_or_create(note_text)) == record
    """

    def __init__(
        self,
        store: DocumentRecordStore,
        provider: EmbeddingProvider,
        *,
        chunk_chars: int = 1_000,
        chunk_overlap: int = 100,
        clock: Callable[[], float] = now_ms,
    ) -> None:
        self._store = store
        self._provider = provider
        self._chunk_chars = max(50, int(chunk_chars))
        self._chunk_overlap = max(0, min(int(chunk_overlap), self._chunk_chars // 2))
        self._clock = clock
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    async def get_or_create(self, content: str, *, source_name: str = "") -> DocumentRecord:
        """Return the record for *content*, embedding it only on first sight.

        Raises:
            InputError: when *content* is blank after normalization.
            StoreError: when the store or the embedding provider fails; no
                partial record is written in that case.
        """

        normalized = normalize_content(content)
        if not normalized:
            raise InputError(error_code=ErrorCode.EMPTY_DOCUMENT, message="No note content found.")
        key = content_hash(normalized)

        async with self._lock:
            existing = await self._run_store(self._store.get, key)
            if existing is not None:
                self._stats.hits += 1
                emit("document_cache.hit", {"content_hash": key, "source_name": existing.source_name})
                return existing

            self._stats.misses += 1
            passages = await self._embed_passages(content, key)
            record = DocumentRecord(
                content_hash=key,
                source_name=source_name,
                embedding_vector=centroid([passage.vector for passage in passages]),
                inserted_at=self._clock(),
                content=normalized,
                passages=tuple(passages),
            )
            inserted = await self._run_store(self._store.put, record)
            if not inserted:
                # Another writer sharing the store got there first; keep its record.
                stored = await self._run_store(self._store.get, key)
                if stored is not None:
                    return stored
            LOGGER.debug("Embedded %s passage(s) for %s (%s)", len(passages), source_name or "<unnamed>", key[:12])
            emit(
                "document_cache.miss",
                {
                    "content_hash": key,
                    "source_name": source_name,
                    "passages": len(passages),
                    "provider": getattr(self._provider, "name", None),
                },
            )
            return record

    async def lookup(self, key: str) -> DocumentRecord | None:
        """Return the record stored under *key*, if any."""

        if not key:
            return None
        return await self._run_store(self._store.get, key)

    async def evict_older_than(self, max_age_ms: float) -> int:
        """Remove every record older than *max_age_ms* and return the count.

        A non-positive age expires everything, including records inserted in
        the same clock tick.
        """

        async with self._lock:
            now = self._clock()
            entries = await self._run_store(self._store.scan)
            expired = [entry.content_hash for entry in entries if _is_expired(now - entry.inserted_at, max_age_ms)]
            for key in expired:
                await self._run_store(self._store.delete, key)
            if expired:
                self._stats.evictions += len(expired)
                LOGGER.info("Evicted %d document record(s) older than %.0f ms", len(expired), max_age_ms)
                emit("document_cache.evicted", {"count": len(expired), "max_age_ms": max_age_ms})
            return len(expired)

    async def evict_expired(self, ttl_days: float) -> int:
        """Startup sweep helper expressed in days."""

        return await self.evict_older_than(float(ttl_days) * _MS_PER_DAY)

    async def clear_all(self) -> int:
        """Drop every record; later lookups re-embed from scratch."""

        async with self._lock:
            removed = await self._run_store(self._store.destroy_all)
            self._stats.clears += 1
            LOGGER.info("Cleared %d document record(s)", removed)
            emit("document_cache.cleared", {"count": removed})
            return removed

    def close(self) -> None:
        """Release the backing store's resources when it holds any."""

        close = getattr(self._store, "close", None)
        if callable(close):
            close()

    async def _embed_passages(self, content: str, key: str) -> list[Passage]:
        texts = split_passages(content, max_chars=self._chunk_chars, overlap=self._chunk_overlap)
        vectors: list[tuple[float, ...]] = []
        batch_size = max(1, int(getattr(self._provider, "max_batch_size", 16)))
        try:
            for batch in chunk_list(texts, batch_size):
                embedded = await self._provider.embed_documents(batch)
                if len(embedded) != len(batch):
                    raise ValueError(f"Provider returned {len(embedded)} vector(s) for {len(batch)} passage(s)")
                vectors.extend(tuple(float(value) for value in vector) for vector in embedded)
        except Exception as exc:
            LOGGER.exception("Embedding provider failed for %s", key[:12])
            emit("document_cache.error", {"content_hash": key, "error": str(exc)[:200]})
            raise StoreError(
                message="Failed to embed the note.",
                details={"content_hash": key, "error": str(exc)[:200]},
                suggestion="Check the embedding provider settings and try again.",
            ) from exc
        return [Passage(index=index, text=text, vector=vector) for index, (text, vector) in enumerate(zip(texts, vectors))]

    async def _run_store(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: func(*args))
        except _STORE_ERRORS as exc:
            LOGGER.warning("Document store call %s failed: %s", getattr(func, "__name__", func), exc)
            raise StoreError(details={"operation": getattr(func, "__name__", ""), "error": str(exc)[:200]}) from exc


def split_passages(text: str, *, max_chars: int = 1_000, overlap: int = 100) -> list[str]:
    """Split *text* into normalized passages of at most *max_chars*.

    Paragraphs are packed greedily; a paragraph longer than the limit is cut
    into windows that overlap by *overlap* characters.
    """

    max_chars = max(1, max_chars)
    overlap = max(0, min(overlap, max_chars - 1))
    passages: list[str] = []
    current = ""
    for paragraph in _PARAGRAPH_RE.split(text or ""):
        piece = normalize_content(paragraph)
        if not piece:
            continue
        if len(piece) > max_chars:
            if current:
                passages.append(current)
                current = ""
            passages.extend(_windows(piece, max_chars, overlap))
            continue
        candidate = f"{current} {piece}" if current else piece
        if len(candidate) > max_chars:
            passages.append(current)
            current = piece
        else:
            current = candidate
    if current:
        passages.append(current)
    return passages


def _windows(text: str, size: int, overlap: int) -> Sequence[str]:
    step = size - overlap
    windows: list[str] = []
    start = 0
    while start < len(text):
        window = text[start : start + size].strip()
        if window:
            windows.append(window)
        if start + size >= len(text):
            break
        start += step
    return windows


def _is_expired(age_ms: float, max_age_ms: float) -> bool:
    if max_age_ms <= 0:
        return age_ms >= max_age_ms
    return age_ms > max_age_ms
