"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from notecopilot.ai.memory.document_cache import DocumentCache
from notecopilot.ai.memory.store import InMemoryDocumentStore
from notecopilot.chat.message_model import ChatLog
from notecopilot.services import telemetry

from tests.helpers import FakeClock, KeywordEmbeddingProvider


@pytest.fixture(autouse=True)
def _reset_telemetry():
    telemetry.clear_event_listeners()
    yield
    telemetry.clear_event_listeners()


@pytest.fixture
def chat_log() -> ChatLog:
    return ChatLog()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def embedder() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def cache(store: InMemoryDocumentStore, embedder: KeywordEmbeddingProvider, clock: FakeClock) -> DocumentCache:
    return DocumentCache(store, embedder, chunk_chars=200, chunk_overlap=20, clock=clock)


@pytest.fixture
def notices() -> list:
    return []
