"""Async AI client wrapper built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, MutableMapping, Sequence, cast

import httpx
import tiktoken
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .ai_types import ModelConfig, TokenCounterProtocol

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4
_RETRYABLE_ERRORS = (
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


class ApproxByteCounter(TokenCounterProtocol):
    """Deterministic fallback counter that estimates tokens via byte length."""

    def __init__(self, *, model_name: str | None = None, charset: str = "utf-8", bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self.model_name = model_name
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


class TiktokenCounter(TokenCounterProtocol):
    """Token counter backed by OpenAI's tiktoken package."""

    def __init__(self, model_name: str, *, encoding_name: str | None = None) -> None:
        if not model_name:
            raise ValueError("model_name is required for TiktokenCounter")
        self.model_name = model_name
        self._encoding = self._load_encoding(model_name, encoding_name)
        self._fallback = ApproxByteCounter(model_name=model_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        try:
            return len(self._encoding.encode(text, disallowed_special=()))
        except ValueError:
            LOGGER.debug("tiktoken encode failed; falling back to approximation", exc_info=True)
            return self._fallback.estimate(text)

    def estimate(self, text: str) -> int:
        return self._fallback.estimate(text)

    @staticmethod
    def _load_encoding(model_name: str, encoding_name: str | None) -> tiktoken.Encoding:
        if encoding_name:
            return tiktoken.get_encoding(encoding_name)
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("Falling back to cl100k_base encoding for model %s", model_name)
            return tiktoken.get_encoding("cl100k_base")


class TokenCounterRegistry:
    """Registry maintaining tokenizer implementations per model."""

    _shared: TokenCounterRegistry | None = None

    def __init__(self, *, fallback: TokenCounterProtocol | None = None) -> None:
        self._fallback = fallback or ApproxByteCounter()
        self._counters: Dict[str, TokenCounterProtocol] = {}

    @classmethod
    def global_instance(cls) -> "TokenCounterRegistry":
        if cls._shared is None:
            cls._shared = TokenCounterRegistry()
        return cls._shared

    def register(self, model_name: str, counter: TokenCounterProtocol) -> None:
        key = self._normalize_key(model_name)
        if not key:
            raise ValueError("model_name is required for token counter registration")
        self._counters[key] = counter

    def unregister(self, model_name: str) -> None:
        self._counters.pop(self._normalize_key(model_name), None)

    def has(self, model_name: str | None) -> bool:
        key = self._normalize_key(model_name)
        return bool(key and key in self._counters)

    def get(self, model_name: str | None = None) -> TokenCounterProtocol:
        key = self._normalize_key(model_name)
        if key and key in self._counters:
            return self._counters[key]
        return self._fallback

    def count(self, model_name: str | None, text: str) -> int:
        return self.get(model_name).count(text)

    def estimate(self, text: str) -> int:
        return self._fallback.estimate(text)

    @staticmethod
    def _normalize_key(model_name: str | None) -> str:
        return (model_name or "").strip().lower()


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    stream: bool = True
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Async chat provider with streaming helpers and retry semantics.

    Retries only apply while no delta has been yielded for the current call;
    once output has started, failures propagate to the caller unchanged.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_registry: TokenCounterRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._client: AsyncOpenAI | None = client
        self._models_cache: List[str] | None = None
        self._models_lock = asyncio.Lock()
        self._token_registry = token_registry or TokenCounterRegistry.global_instance()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def openai(self) -> AsyncOpenAI:
        """Return the SDK client, creating it on first use."""

        if self._client is None:
            self._client = self._build_client(self._settings)
        return self._client

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        config: ModelConfig,
    ) -> AsyncIterator[str]:
        """Yield text deltas for the provided messages."""

        payload = self._build_chat_payload(self._coerce_messages(messages), config)
        LOGGER.debug(
            "Starting chat completion via %s with %s message(s) (stream=%s)",
            payload["model"],
            len(payload["messages"]),
            self._settings.stream,
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        emitted = False
        async for attempt in self._retrying(lambda: not emitted):
            with attempt:
                if not self._settings.stream:
                    response = await self.openai.chat.completions.create(**payload)
                    content = response.choices[0].message.content if response.choices else None
                    if content:
                        emitted = True
                        yield content
                    break
                async with self.openai.chat.completions.stream(**payload) as stream:
                    async for event in stream:
                        delta = self._normalize_stream_event(event)
                        if delta:
                            emitted = True
                            yield delta
                break

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return a list of supported model identifiers."""

        if self._models_cache is not None and not force_refresh:
            return list(self._models_cache)

        async with self._models_lock:
            if self._models_cache is not None and not force_refresh:
                return list(self._models_cache)

            response = await self.openai.models.list()
            models = [item.id for item in response.data if getattr(item, "id", None)]
            self._models_cache = models
            return list(models)

    def get_token_counter(self, model: str | None = None) -> TokenCounterProtocol:
        model_name = model or self._settings.model
        self._register_default_token_counter(model_name)
        return self._token_registry.get(model_name)

    def count_tokens(self, text: str, *, model: str | None = None, estimate_only: bool = False) -> int:
        if not text:
            return 0
        counter = self.get_token_counter(model)
        if estimate_only:
            return counter.estimate(text)
        return counter.count(text)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key or None,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _register_default_token_counter(self, model_name: str) -> None:
        model_name = (model_name or "").strip()
        if not model_name or self._token_registry.has(model_name):
            return
        counter: TokenCounterProtocol
        try:
            counter = TiktokenCounter(model_name)
        except Exception as exc:  # encodings are fetched on first use and may be unreachable
            LOGGER.warning("Failed to load tiktoken encoding for %s (%s); using byte estimates", model_name, exc)
            counter = ApproxByteCounter(model_name=model_name)
        self._token_registry.register(model_name, counter)

    def _retrying(self, may_retry: Any) -> AsyncRetrying:
        def _should_retry(exc: BaseException) -> bool:
            if not may_retry():
                return False
            if isinstance(exc, APIStatusError):
                return exc.status_code >= 500 or isinstance(exc, RateLimitError)
            return isinstance(exc, _RETRYABLE_ERRORS) or (
                isinstance(exc, APIError) and not isinstance(exc, APIStatusError)
            )

        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_should_retry),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, MutableMapping):
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            else:
                try:
                    normalized.append(cast(ChatCompletionMessageParam, dict(message)))
                except TypeError as exc:
                    raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        messages: Sequence[ChatCompletionMessageParam],
        config: ModelConfig,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": config.model or self._settings.model,
            "messages": list(messages),
            "temperature": config.temperature,
        }
        if config.max_tokens is not None:
            payload["max_tokens"] = config.max_tokens
        return payload

    @staticmethod
    def _normalize_stream_event(event: ChatCompletionStreamEvent[Any]) -> str | None:
        if getattr(event, "type", None) != "content.delta":
            return None
        delta_text = getattr(event, "delta", None)
        return str(delta_text) if delta_text else None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        if self._client is None:
            return
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


__all__ = [
    "AIClient",
    "ApproxByteCounter",
    "ClientSettings",
    "TiktokenCounter",
    "TokenCounterRegistry",
]
