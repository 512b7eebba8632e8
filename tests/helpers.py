"""Shared test helpers and stub classes.

Import from here instead of duplicating provider stubs in individual test files.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, AsyncGenerator, Mapping, Sequence

from notecopilot.ai.ai_types import ModelConfig


class StubChatProvider:
    """Scripted chat provider.

    Each call to :meth:`stream_chat` plays the next script. A script is a list
    of items: strings are yielded as deltas, exceptions are raised and
    :class:`asyncio.Event` instances block until set.

    Example:
        gate = asyncio.Event()
        provider = StubChatProvider([["Hel", gate, "lo"]])
    """

    def __init__(self, scripts: Sequence[Sequence[Any]] | None = None, *, default: Sequence[Any] = ("ok",)) -> None:
        self.scripts = [list(script) for script in scripts or ()]
        self.default = list(default)
        self.calls: list[tuple[list[dict[str, Any]], ModelConfig]] = []
        self.closed = False
        self.finished_streams = 0

    def stream_chat(self, messages: Sequence[Mapping[str, Any]], config: ModelConfig) -> AsyncGenerator[str, None]:
        index = len(self.calls)
        self.calls.append(([dict(message) for message in messages], config))
        script = self.scripts[index] if index < len(self.scripts) else self.default
        return self._play(list(script))

    async def _play(self, script: list[Any]) -> AsyncGenerator[str, None]:
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                await asyncio.sleep(0)
                yield item
        finally:
            self.finished_streams += 1

    def count_tokens(self, text: str) -> int:
        return len(text.split())

    async def aclose(self) -> None:
        self.closed = True


class KeywordEmbeddingProvider:
    """Bag-of-keywords embedder with call counting and optional failure/gating."""

    name = "keyword"

    def __init__(
        self,
        vocabulary: Sequence[str] = ("paris", "france", "berlin", "germany", "capital", "river"),
        *,
        max_batch_size: int = 8,
    ) -> None:
        self.vocabulary = [word.lower() for word in vocabulary]
        self.max_batch_size = max_batch_size
        self.document_calls = 0
        self.query_calls = 0
        self.error: BaseException | None = None
        self.gate: asyncio.Event | None = None

    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        self.document_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return [self.vector(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        self.query_calls += 1
        return self.vector(text)

    def vector(self, text: str) -> list[float]:
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(term)) for term in self.vocabulary] + [0.1]


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


async def drain(handle: Any) -> list[str]:
    """Collect every delta from a generation handle."""

    return [delta async for delta in handle]


async def wait_for(predicate: Any, *, attempts: int = 200) -> None:
    """Yield to the loop until *predicate* holds."""

    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")
