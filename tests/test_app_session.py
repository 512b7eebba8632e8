"""Tests for the session bootstrap and CLI entry point."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from notecopilot import app
from notecopilot.ai.ai_types import DocumentGrounded, PlainChat
from notecopilot.ai.memory.document_cache import DocumentCache
from notecopilot.ai.memory.store import InMemoryDocumentStore
from notecopilot.errors import ErrorCode, StoreError
from notecopilot.services.prompt_library import PromptLibrary
from notecopilot.services.settings import Settings

from tests.helpers import StubChatProvider

_DAY_MS = 24 * 60 * 60 * 1000


class _BrokenStore(InMemoryDocumentStore):
    def scan(self):
        raise sqlite3.OperationalError("database is locked")


def _session(provider, cache, notices, **kwargs) -> app.ChatSession:
    settings = kwargs.pop("settings", Settings(ttl_days=1))
    return app.ChatSession(
        settings=settings,
        provider=provider,
        document_cache=cache,
        notifier=notices.append,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_send_user_message_streams_reply(cache, notices) -> None:
    session = _session(StubChatProvider([["Hi ", "there"]]), cache, notices)

    handle = session.send_user_message("Hello")
    assert handle is not None
    reply = await handle.wait()

    assert [message.content for message in session.chat_log.visible_messages()] == ["Hello", "Hi there"]
    assert reply is session.chat_log.messages[-1]


@pytest.mark.asyncio
async def test_empty_user_message_raises_notice(cache, notices) -> None:
    session = _session(StubChatProvider(), cache, notices)

    assert session.send_user_message("  ") is None

    assert notices[0].error_code == ErrorCode.EMPTY_MESSAGE
    assert len(session.chat_log) == 0


@pytest.mark.asyncio
async def test_ground_on_note_announces_and_switches_mode(cache, notices) -> None:
    provider = StubChatProvider([["Paris"]])
    session = _session(provider, cache, notices)

    record = await session.ground_on_note("Paris is the capital of France.", "France", activate=True)
    assert record is not None
    handle = session.send_user_message("What is the capital?")
    assert handle is not None
    await handle.wait()

    assert session.chat_log.messages[0].content == "Reading [[France]]..."
    assert session.controller.mode == DocumentGrounded(record.content_hash)
    assert session.grounded_on == record
    assert "Paris is the capital of France." in provider.calls[0][0][1]["content"]


@pytest.mark.asyncio
async def test_ground_on_note_without_activation_stays_plain(cache, notices) -> None:
    session = _session(StubChatProvider(), cache, notices)

    await session.ground_on_note("Berlin is in Germany.", "Germany")

    assert session.controller.mode == PlainChat()


@pytest.mark.asyncio
async def test_ground_on_note_retargets_when_already_grounded(cache, notices) -> None:
    session = _session(StubChatProvider(), cache, notices)
    await session.ground_on_note("Paris is the capital of France.", "France", activate=True)

    second = await session.ground_on_note("Berlin is in Germany.", "Germany")

    assert second is not None
    assert session.controller.mode == DocumentGrounded(second.content_hash)


@pytest.mark.asyncio
async def test_ground_on_empty_note_raises_notice(cache, notices) -> None:
    session = _session(StubChatProvider(), cache, notices)

    assert await session.ground_on_note("   ", "Empty", activate=True) is None

    assert notices[0].error_code == ErrorCode.EMPTY_DOCUMENT
    assert len(session.chat_log) == 0


@pytest.mark.asyncio
async def test_start_sweeps_expired_records(cache, clock, store, notices) -> None:
    session = _session(StubChatProvider(), cache, notices)
    await cache.get_or_create("Paris is the capital of France.")
    clock.advance(2 * _DAY_MS)
    await cache.get_or_create("Berlin is in Germany.")

    removed = await session.start()

    assert removed == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_start_reports_store_failure(embedder, notices) -> None:
    cache = DocumentCache(_BrokenStore(), embedder)
    session = _session(StubChatProvider(), cache, notices)

    assert await session.start() == 0

    assert isinstance(notices[0], StoreError)


@pytest.mark.asyncio
async def test_clear_document_store_keeps_grounding_and_reports_miss(cache, store, notices) -> None:
    provider = StubChatProvider()
    session = _session(provider, cache, notices)
    record = await session.ground_on_note("Paris is the capital of France.", "France", activate=True)
    assert record is not None

    assert await session.clear_document_store() is True
    handle = session.send_user_message("What is the capital?")
    assert handle is not None
    assert await handle.wait() is None

    assert session.controller.mode == DocumentGrounded(record.content_hash)
    assert session.grounded_on is None
    assert len(store) == 0
    assert provider.calls == []
    assert [notice.error_code for notice in notices] == [ErrorCode.CACHE_MISS]


@pytest.mark.asyncio
async def test_apply_custom_prompt_uses_library_template(cache, notices, tmp_path: Path) -> None:
    library = PromptLibrary(tmp_path / "prompts.json")
    library.add("Haiku", "Rewrite as a haiku: {}")
    session = _session(StubChatProvider([["five seven five"]]), cache, notices, prompt_library=library)

    handle = session.apply_custom_prompt("Haiku", "the river at dawn")
    assert handle is not None
    await handle.wait()

    assert session.chat_log.messages[0].content == "Rewrite as a haiku: the river at dawn"
    assert session.chat_log.messages[-1].content == "five seven five"


@pytest.mark.asyncio
async def test_apply_unknown_custom_prompt_raises_notice(cache, notices, tmp_path: Path) -> None:
    library = PromptLibrary(tmp_path / "prompts.json")
    session = _session(StubChatProvider(), cache, notices, prompt_library=library)

    assert session.apply_custom_prompt("Missing", "text") is None

    assert notices[0].error_code == ErrorCode.PROMPT_NOT_FOUND


@pytest.mark.asyncio
async def test_save_as_note_writes_visible_history(cache, notices, tmp_path: Path) -> None:
    session = _session(StubChatProvider([["Hello!"]]), cache, notices)
    handle = session.send_user_message("Hi")
    assert handle is not None
    await handle.wait()

    target = session.save_as_note(tmp_path / "exports")

    assert target.parent == tmp_path / "exports"
    assert target.read_text(encoding="utf-8") == "**user**: Hi\n\n**assistant**: Hello!"


@pytest.mark.asyncio
async def test_aclose_closes_provider(cache, notices) -> None:
    provider = StubChatProvider()
    session = _session(provider, cache, notices)

    await session.aclose()

    assert provider.closed


@pytest.mark.parametrize(
    "rest, expected",
    [
        ("--param French Hello there", ("French", "Hello there")),
        ('--param "very formal" Hi', ("very formal", "Hi")),
        ("plain text", (None, "plain text")),
    ],
)
def test_split_parameter(rest: str, expected: tuple) -> None:
    assert app._split_parameter(rest) == expected


def test_main_runs_store_sweep(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("NOTECOPILOT_HOME", str(tmp_path))
    monkeypatch.delenv("NOTECOPILOT_DEBUG", raising=False)
    monkeypatch.delenv("NOTECOPILOT_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(app, "configure_logging", lambda debug=False, force=False: None)

    exit_code = app.main(["--settings-path", str(tmp_path / "settings.json"), "sweep-store"])

    assert exit_code == 0
    assert "Removed 0 expired document record(s)." in capsys.readouterr().out
    assert (tmp_path / "documents.sqlite").exists()


def test_main_chat_without_api_key_reports_notice(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("NOTECOPILOT_HOME", str(tmp_path))
    monkeypatch.delenv("NOTECOPILOT_DEBUG", raising=False)
    monkeypatch.delenv("NOTECOPILOT_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(app, "configure_logging", lambda debug=False, force=False: None)

    exit_code = app.main(["--settings-path", str(tmp_path / "settings.json"), "chat"])

    assert exit_code == 1
    assert "No API key is configured." in capsys.readouterr().err


def test_from_settings_defers_sdk_client_creation(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    session = app.ChatSession.from_settings(Settings(api_key=""), data_dir=tmp_path, store=InMemoryDocumentStore())

    assert session.prompt_library is not None
    assert session.document_cache.stats.total_requests == 0


@pytest.mark.asyncio
async def test_update_settings_reconfigures_controller(cache, notices) -> None:
    provider = StubChatProvider([["ok"]])
    session = _session(provider, cache, notices)

    session.update_settings(Settings(model="gpt-4o", temperature=0.1, context_turns=1))
    handle = session.send_user_message("hello")
    assert handle is not None
    await handle.wait()

    assert session.settings.model == "gpt-4o"
    assert provider.calls[0][1].model == "gpt-4o"
    assert provider.calls[0][1].temperature == 0.1
    assert session.controller.memory.max_turns == 1
