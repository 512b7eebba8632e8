"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest
from openai import APIConnectionError, AsyncOpenAI

from notecopilot.ai.ai_types import ModelConfig
from notecopilot.ai.client import AIClient, ApproxByteCounter, ClientSettings, TokenCounterRegistry


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None
    content: str | None = None


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "http://local/chat/completions"))


class _FakeStream:
    def __init__(self, events: Iterable[Any]):
        self._iterator = iter(list(events))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> _FakeEvent:
        try:
            item = next(self._iterator)
        except StopIteration as exc:
            raise StopAsyncIteration from exc
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeStreamContext:
    def __init__(self, events: Iterable[Any], *, fail_on_enter: BaseException | None = None):
        self._events = list(events)
        self._fail_on_enter = fail_on_enter

    async def __aenter__(self) -> _FakeStream:
        if self._fail_on_enter is not None:
            raise self._fail_on_enter
        return _FakeStream(self._events)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeCompletions:
    def __init__(self, attempts: Iterable[Any]):
        self._attempts = list(attempts)
        self.calls: list[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        attempt = self._attempts[min(len(self.calls), len(self._attempts)) - 1]
        if isinstance(attempt, BaseException):
            return _FakeStreamContext([], fail_on_enter=attempt)
        return _FakeStreamContext(attempt)

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        message = SimpleNamespace(content="whole answer")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class _FakeModels:
    def __init__(self, payload: list[SimpleNamespace]):
        self._payload = payload
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        return SimpleNamespace(data=self._payload)


def _make_client(*attempts: Any) -> SimpleNamespace:
    completions = _FakeCompletions(attempts or [[]])
    models = _FakeModels([SimpleNamespace(id="test-model")])
    return SimpleNamespace(chat=SimpleNamespace(completions=completions), models=models)


def _settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {
        "base_url": "http://local",
        "api_key": "test",
        "model": "stub-model",
        "max_retries": 3,
        "retry_min_seconds": 0,
        "retry_max_seconds": 0,
    }
    values.update(overrides)
    return ClientSettings(**values)


def _registry() -> TokenCounterRegistry:
    registry = TokenCounterRegistry()
    registry.register("stub-model", ApproxByteCounter(model_name="stub-model"))
    return registry


@pytest.mark.asyncio
async def test_list_models_caches_results() -> None:
    payload = [SimpleNamespace(id="gpt-4o"), SimpleNamespace(id="gpt-4o-mini")]
    fake_models = _FakeModels(payload)
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions([[]])), models=fake_models)
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    first = await client.list_models()
    second = await client.list_models()

    assert first == ["gpt-4o", "gpt-4o-mini"]
    assert second == first
    assert fake_models.calls == 1


@pytest.mark.asyncio
async def test_stream_chat_yields_only_content_deltas() -> None:
    events = [
        _FakeEvent(type="content.delta", delta="Hel"),
        _FakeEvent(type="content.delta", delta="lo"),
        _FakeEvent(type="content.done", content="Hello"),
    ]
    fake_client = _make_client(events)
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    deltas = [delta async for delta in client.stream_chat([{"role": "user", "content": "Hi"}], ModelConfig(model="stub-model", temperature=0.3, max_tokens=50))]

    assert deltas == ["Hel", "lo"]
    call = fake_client.chat.completions.calls[0]
    assert call["model"] == "stub-model"
    assert call["temperature"] == 0.3
    assert call["max_tokens"] == 50


@pytest.mark.asyncio
async def test_stream_open_failure_is_retried() -> None:
    fake_client = _make_client(_connection_error(), [_FakeEvent(type="content.delta", delta="ok")])
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    deltas = [delta async for delta in client.stream_chat([{"role": "user", "content": "Hi"}], ModelConfig())]

    assert deltas == ["ok"]
    assert len(fake_client.chat.completions.calls) == 2


@pytest.mark.asyncio
async def test_failure_after_first_delta_is_not_retried() -> None:
    events = [_FakeEvent(type="content.delta", delta="partial"), _connection_error()]
    fake_client = _make_client(events, [_FakeEvent(type="content.delta", delta="retried")])
    client = AIClient(_settings(), client=cast(AsyncOpenAI, fake_client))

    seen: list[str] = []
    with pytest.raises(APIConnectionError):
        async for delta in client.stream_chat([{"role": "user", "content": "Hi"}], ModelConfig()):
            seen.append(delta)

    assert seen == ["partial"]
    assert len(fake_client.chat.completions.calls) == 1


@pytest.mark.asyncio
async def test_non_streaming_mode_yields_whole_answer() -> None:
    fake_client = _make_client()
    client = AIClient(_settings(stream=False), client=cast(AsyncOpenAI, fake_client))

    deltas = [delta async for delta in client.stream_chat([{"role": "user", "content": "Hi"}], ModelConfig())]

    assert deltas == ["whole answer"]


@pytest.mark.asyncio
async def test_stream_chat_requires_messages() -> None:
    client = AIClient(_settings(), client=cast(AsyncOpenAI, _make_client()))

    generator = client.stream_chat([], ModelConfig())
    with pytest.raises(ValueError):
        await generator.__anext__()


@pytest.mark.asyncio
async def test_debug_logging_captures_prompt_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_client = _make_client([_FakeEvent(type="content.delta", delta="done")])
    client = AIClient(_settings(debug_logging=True), client=cast(AsyncOpenAI, fake_client))
    captured: dict[str, Any] = {}

    def _capture(payload: Any) -> None:
        captured["payload"] = payload

    monkeypatch.setattr(client, "_log_prompt_payload", _capture)

    async for _delta in client.stream_chat([{"role": "user", "content": "Hello"}], ModelConfig()):
        pass

    assert captured["payload"]["messages"][0]["content"] == "Hello"


def test_count_tokens_uses_registered_counter() -> None:
    client = AIClient(_settings(), client=cast(AsyncOpenAI, _make_client()), token_registry=_registry())

    assert client.count_tokens("") == 0
    assert client.count_tokens("abcdefgh") == 2


@pytest.mark.asyncio
async def test_aclose_closes_underlying_client() -> None:
    class _StubAsyncOpenAI:
        def __init__(self) -> None:
            self.closed = False

        async def close(self) -> None:
            self.closed = True

    stub = _StubAsyncOpenAI()
    client = AIClient(_settings(), client=cast(AsyncOpenAI, stub))

    await client.aclose()

    assert stub.closed is True


@pytest.mark.asyncio
async def test_sdk_client_is_created_on_first_use(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    built: list[ClientSettings] = []
    fake_client = _make_client([_FakeEvent(type="content.delta", delta="hi")])

    def _build(settings: ClientSettings) -> AsyncOpenAI:
        built.append(settings)
        return cast(AsyncOpenAI, fake_client)

    client = AIClient(_settings(api_key=""))
    monkeypatch.setattr(client, "_build_client", _build)
    await client.aclose()
    assert built == []

    deltas = [delta async for delta in client.stream_chat([{"role": "user", "content": "Hi"}], ModelConfig())]

    assert deltas == ["hi"]
    assert len(built) == 1
    assert client.openai is fake_client
