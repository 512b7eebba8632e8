"""Read-through retrieval view over cached document records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from ...errors import CacheMissError
from .document_cache import DocumentCache
from .embeddings import cosine_similarity
from .records import DocumentRecord, Passage

LOGGER = logging.getLogger(__name__)

Similarity = Callable[[Sequence[float], Sequence[float]], float]


@dataclass(slots=True, frozen=True)
class RetrievalMatch:
    """A scored passage and the record it came from."""

    record: DocumentRecord
    passage: Passage
    score: float
    rank: int


class RetrievalIndex:
    """Ranks passages of the grounded document(s) against a query.

    The index holds no state of its own: every search resolves the records
    through the :class:`DocumentCache`, so evictions and clears are seen
    immediately.
    """

    def __init__(
        self,
        cache: DocumentCache,
        document_hashes: Sequence[str],
        *,
        similarity: Similarity = cosine_similarity,
        top_k: int = 4,
    ) -> None:
        if not document_hashes:
            raise ValueError("RetrievalIndex requires at least one document hash")
        self._cache = cache
        self._hashes = tuple(document_hashes)
        self._similarity = similarity
        self._top_k = max(1, int(top_k))

    @property
    def document_hashes(self) -> tuple[str, ...]:
        return self._hashes

    async def records(self) -> list[DocumentRecord]:
        """Resolve the grounded records, oldest insertion first.

        Raises:
            CacheMissError: when a grounded hash has no record (for example
                after a TTL sweep or an explicit clear).
        """

        resolved: list[DocumentRecord] = []
        for key in self._hashes:
            record = await self._cache.lookup(key)
            if record is None:
                raise CacheMissError(document_hash=key, details={"content_hash": key})
            resolved.append(record)
        resolved.sort(key=lambda record: record.inserted_at)
        return resolved

    async def search(self, query: str, *, top_k: int | None = None) -> list[RetrievalMatch]:
        """Return passages ordered by descending similarity to *query*.

        Ties keep insertion order: earlier records, then earlier passages.
        """

        records = await self.records()
        limit = max(1, int(top_k or self._top_k))
        query_vector = tuple(float(value) for value in await self._cache.provider.embed_query(query))
        scored: list[tuple[float, DocumentRecord, Passage]] = []
        for record in records:
            for passage in record.passages:
                scored.append((self._similarity(query_vector, passage.vector), record, passage))
        # list.sort is stable, so equal scores stay in insertion order.
        scored.sort(key=lambda item: item[0], reverse=True)
        matches = [
            RetrievalMatch(record=record, passage=passage, score=score, rank=rank)
            for rank, (score, record, passage) in enumerate(scored[:limit])
        ]
        LOGGER.debug("Retrieved %d of %d passage(s) for grounding", len(matches), len(scored))
        return matches

    async def build_context(self, query: str, *, top_k: int | None = None) -> str:
        """Render the best passages into a grounding text block."""

        matches = await self.search(query, top_k=top_k)
        blocks = []
        for match in sorted(matches, key=lambda item: (item.record.inserted_at, item.passage.index)):
            label = match.record.source_name or match.record.content_hash[:12]
            blocks.append(f"[{label} #{match.passage.index + 1}]\n{match.passage.text}")
        return "\n\n".join(blocks)


__all__ = ["RetrievalIndex", "RetrievalMatch", "Similarity"]
