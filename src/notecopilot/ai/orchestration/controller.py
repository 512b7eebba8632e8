"""Streaming conversation controller.

The controller turns a :class:`ChatMessage` plus the current generation mode
into a provider call, streams deltas into the chat log's streaming slot and
commits the finished assistant message. Exactly one generation is active at a
time: starting a new one cancels the previous handle before the new request is
issued.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Sequence

from ...chat.message_model import ChatLog, ChatMessage
from ...errors import CacheMissError, CopilotError, ErrorCode, InputError, ProviderError
from ...services.telemetry import emit
from .. import prompts
from ..ai_types import (
    ChatProvider,
    DocumentGrounded,
    GenerationMode,
    GenerationState,
    ModelConfig,
    ModelOverrides,
    PlainChat,
)
from ..memory.buffers import ConversationMemory
from ..memory.document_cache import DocumentCache
from ..memory.retrieval import RetrievalIndex

LOGGER = logging.getLogger(__name__)

Notifier = Callable[[CopilotError], None]
_HANDLE_IDS = itertools.count(1)


def _log_notice(error: CopilotError) -> None:
    LOGGER.warning("Notice: %s", error.as_notice())


class GenerationHandle:
    """Cancellable unit of work representing one streamed model response.

    Iterate the handle (``async for delta in handle``) to observe deltas as
    they arrive, or ``await handle.wait()`` for the committed message. A
    handle has a single consumer for its delta stream.
    """

    def __init__(self, message: ChatMessage, config: ModelConfig) -> None:
        self.id = f"gen-{next(_HANDLE_IDS)}"
        self.message = message
        self.config = config
        self.error: CopilotError | None = None
        self.committed: ChatMessage | None = None
        self._state = GenerationState.PENDING
        self._cancel_requested = False
        self._parts: list[str] = []
        self._deltas: asyncio.Queue[str | None] = asyncio.Queue()
        self._done = asyncio.Event()
        self._on_cancel: Callable[["GenerationHandle"], None] | None = None

    def __repr__(self) -> str:
        return f"GenerationHandle(id={self.id!r}, state={self._state.value!r})"

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    @property
    def done(self) -> bool:
        return self._state.finished

    @property
    def partial_text(self) -> str:
        return "".join(self._parts)

    def cancel(self) -> bool:
        """Request cancellation; returns ``False`` when already finished."""

        if self._state.finished or self._cancel_requested:
            return False
        self._cancel_requested = True
        if self._on_cancel is not None:
            self._on_cancel(self)
        return True

    async def wait(self) -> ChatMessage | None:
        """Wait for the generation to finish and return the committed message."""

        await self._done.wait()
        return self.committed

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            delta = await self._deltas.get()
            if delta is None:
                return
            yield delta

    def _mark_streaming(self) -> None:
        if not self._state.finished:
            self._state = GenerationState.STREAMING

    def _push(self, delta: str) -> None:
        self._parts.append(delta)
        self._deltas.put_nowait(delta)

    def _finish(self, state: GenerationState) -> bool:
        if self._state.finished:
            return False
        self._state = state
        if state is not GenerationState.COMPLETED:
            self._parts.clear()
        self._deltas.put_nowait(None)
        self._done.set()
        return True


class ConversationController:
    """Owns generation mode, model configuration and the single active handle."""

    def __init__(
        self,
        provider: ChatProvider,
        chat_log: ChatLog,
        *,
        config: ModelConfig | None = None,
        document_cache: DocumentCache | None = None,
        memory: ConversationMemory | None = None,
        notifier: Notifier | None = None,
        retrieval_top_k: int = 4,
    ) -> None:
        self._provider = provider
        self._chat_log = chat_log
        self._config = (config or ModelConfig()).clamp()
        self._cache = document_cache
        self._memory = memory or ConversationMemory(max_turns=self._config.context_turns)
        self._notifier = notifier or _log_notice
        self._retrieval_top_k = max(1, int(retrieval_top_k))
        self._mode: GenerationMode = PlainChat()
        self._active: GenerationHandle | None = None
        self._tasks: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def mode(self) -> GenerationMode:
        return self._mode

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def memory(self) -> ConversationMemory:
        return self._memory

    @property
    def chat_log(self) -> ChatLog:
        return self._chat_log

    @property
    def active_handle(self) -> GenerationHandle | None:
        handle = self._active
        if handle is not None and handle.done:
            return None
        return handle

    def update_config(self, config: ModelConfig) -> None:
        """Replace the shared configuration for subsequent calls."""

        self._config = config.clamp()
        self._memory.max_turns = self._config.context_turns

    async def switch_mode(self, mode: GenerationMode) -> None:
        """Change how later messages are generated; history is untouched.

        Raises:
            CacheMissError: when grounding on a document that has no record.
        """

        if isinstance(mode, DocumentGrounded):
            if self._cache is None:
                raise CacheMissError(
                    message="Grounded mode requires a document cache.",
                    document_hash=mode.document_hash,
                )
            record = await self._cache.lookup(mode.document_hash)
            if record is None:
                raise CacheMissError(document_hash=mode.document_hash)
        previous = self._mode
        self._mode = mode
        LOGGER.info("Generation mode %s -> %s", previous.describe(), mode.describe())

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    def send_message(
        self,
        message: ChatMessage,
        grounding_context: Sequence[ChatMessage] | None = None,
        *,
        overrides: ModelOverrides | None = None,
    ) -> GenerationHandle:
        """Start generating a reply to *message* and return its handle.

        When *grounding_context* is ``None`` the preceding ``context_turns * 2``
        chat log messages are used as retrieval context; pass an explicit
        (possibly empty) sequence to override. The caller is responsible for
        appending *message* itself to the chat log when it should be recorded.

        Raises:
            InputError: when *message* has no content.
        """

        if not message.content or not message.content.strip():
            raise InputError(error_code=ErrorCode.EMPTY_MESSAGE, message="Message is empty.")

        self.cancel_active_generation()

        config = self._config.merged(overrides)
        if grounding_context is None:
            context = self._chat_log.recent(config.context_turns * 2, before=message)
        else:
            context = list(grounding_context)

        handle = GenerationHandle(message, config)
        handle._on_cancel = self._handle_cancelled
        self._active = handle
        task = asyncio.get_running_loop().create_task(
            self._run(handle, context, self._mode), name=f"notecopilot-{handle.id}"
        )
        self._tasks[handle.id] = task
        task.add_done_callback(lambda _task, key=handle.id: self._tasks.pop(key, None))
        emit(
            "generation.started",
            {"handle_id": handle.id, "mode": self._mode.describe(), "model": config.model},
        )
        return handle

    def cancel_active_generation(self) -> bool:
        """Cancel the active handle, discarding any partial output."""

        handle = self._active
        if handle is None or handle.done:
            return False
        return handle.cancel()

    def count_tokens(self, text: str) -> int:
        return int(self._provider.count_tokens(text))

    def reset_memory(self) -> None:
        """Forget model-side conversational memory; the chat log is untouched."""

        self._memory.clear()
        LOGGER.debug("Conversational memory reset")

    def new_conversation(self) -> None:
        """Cancel generation and clear chat log and memory together."""

        self.cancel_active_generation()
        self._chat_log.clear()
        self._memory.clear()
        LOGGER.info("Started a new conversation")

    async def aclose(self) -> None:
        """Cancel any active work and close the provider when it supports it."""

        self.cancel_active_generation()
        pending = list(self._tasks.values())
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        close = getattr(self._provider, "aclose", None)
        if callable(close):
            await close()

    def _handle_cancelled(self, handle: GenerationHandle) -> None:
        self._chat_log.end_stream(handle.id)
        if handle._finish(GenerationState.CANCELLED):
            LOGGER.debug("Cancelled generation %s", handle.id)
            emit("generation.cancelled", {"handle_id": handle.id})
        task = self._tasks.get(handle.id)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, handle: GenerationHandle, context: Sequence[ChatMessage], mode: GenerationMode) -> None:
        try:
            messages = await self._build_messages(handle, context, mode)
            if handle.cancelled:
                return
            handle._mark_streaming()
            self._chat_log.begin_stream(handle.id)
            async with contextlib.aclosing(self._provider.stream_chat(messages, handle.config)) as stream:
                async for delta in stream:
                    if handle.cancelled:
                        return
                    handle._push(delta)
                    self._chat_log.stream_delta(handle.id, delta)
            if handle.cancelled:
                return
            self._commit(handle)
        except asyncio.CancelledError:
            self._chat_log.end_stream(handle.id)
            handle._finish(GenerationState.CANCELLED)
            raise
        except CopilotError as exc:
            self._fail(handle, exc)
        except Exception as exc:
            LOGGER.debug("Provider call failed for %s", handle.id, exc_info=True)
            self._fail(handle, ProviderError.from_exception(exc))

    async def _build_messages(
        self,
        handle: GenerationHandle,
        context: Sequence[ChatMessage],
        mode: GenerationMode,
    ) -> List[Dict[str, Any]]:
        config = handle.config
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": prompts.system_prompt(config.system_prompt)}
        ]
        if isinstance(mode, DocumentGrounded):
            grounding = await self._retrieve(mode, context, handle.message)
            messages.append({"role": "system", "content": prompts.grounding_prompt(grounding)})
        messages.extend(dict(param) for param in self._memory.as_chat_params())
        messages.append({"role": "user", "content": handle.message.content})
        return messages

    async def _retrieve(
        self,
        mode: DocumentGrounded,
        context: Sequence[ChatMessage],
        message: ChatMessage,
    ) -> str:
        if self._cache is None:
            raise CacheMissError(message="Grounded mode requires a document cache.", document_hash=mode.document_hash)
        index = RetrievalIndex(self._cache, [mode.document_hash], top_k=self._retrieval_top_k)
        query = "\n".join([*(item.content for item in context), message.content])
        return await index.build_context(query)

    def _commit(self, handle: GenerationHandle) -> None:
        content = self._chat_log.end_stream(handle.id) or handle.partial_text
        if not handle._finish(GenerationState.COMPLETED):
            return
        if not content:
            LOGGER.warning("Generation %s completed without content", handle.id)
            emit("generation.completed", {"handle_id": handle.id, "chars": 0})
            return
        committed = ChatMessage.assistant(content)
        handle.committed = committed
        self._chat_log.append(committed)
        self._memory.record_exchange(handle.message.content, content)
        emit("generation.completed", {"handle_id": handle.id, "chars": len(content)})

    def _fail(self, handle: GenerationHandle, error: CopilotError) -> None:
        self._chat_log.end_stream(handle.id)
        handle.error = error
        if not handle._finish(GenerationState.FAILED):
            return
        LOGGER.warning("Generation %s failed: %s", handle.id, error)
        emit("generation.failed", {"handle_id": handle.id, "error": error.error_code})
        try:
            self._notifier(error)
        except Exception:  # notifier isolation
            LOGGER.exception("Notifier failed while reporting %s", error.error_code)


__all__ = ["ConversationController", "GenerationHandle", "Notifier"]
