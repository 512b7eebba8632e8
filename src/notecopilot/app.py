"""Session bootstrap and terminal host for the note copilot."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from .ai.ai_types import ChatProvider, DocumentGrounded, PlainChat
from .ai.client import AIClient, ClientSettings
from .ai.memory.buffers import ConversationMemory
from .ai.memory.document_cache import DocumentCache
from .ai.memory.embeddings import EmbeddingProvider, OpenAIEmbeddingProvider
from .ai.memory.records import DocumentRecord
from .ai.memory.store import DocumentRecordStore, SQLiteDocumentStore
from .ai.orchestration.controller import ConversationController, GenerationHandle, Notifier
from .chat.commands import CommandDispatcher
from .chat.message_model import ChatLog, ChatMessage
from .errors import CopilotError, ErrorCode, InputError, ProviderError, StoreError
from .services.note_export import save_chat_as_note
from .services.prompt_library import PromptLibrary
from .services.settings import Settings, SettingsStore, default_data_dir
from .utils import logging as logging_utils
from .utils.file_io import read_text

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_STORE_FILENAME = "documents.sqlite"
_PROMPTS_FILENAME = "prompts.json"
_PARAM_RE = re.compile(r"^--param\s+(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)'|(?P<bare>\S+))\s*(?P<text>.*)$", re.DOTALL)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


class ChatSession:
    """Wires the chat log, controller, dispatcher and document cache together.

    This is the surface a host (the terminal REPL, an editor plugin) talks to.
    Errors that are meant for the user are routed to the notifier instead of
    being raised.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        provider: ChatProvider,
        document_cache: DocumentCache,
        chat_log: ChatLog | None = None,
        notifier: Notifier | None = None,
        prompt_library: PromptLibrary | None = None,
    ) -> None:
        self._settings = settings
        self._notifier = notifier or _log_notice
        self._chat_log = chat_log or ChatLog()
        self._cache = document_cache
        self._prompt_library = prompt_library
        self._grounded_on: DocumentRecord | None = None
        config = settings.model_config()
        self._controller = ConversationController(
            provider,
            self._chat_log,
            config=config,
            document_cache=document_cache,
            memory=ConversationMemory(max_turns=config.context_turns),
            notifier=self._notifier,
            retrieval_top_k=settings.retrieval_top_k,
        )
        self._dispatcher = CommandDispatcher(self._controller, self._chat_log, notifier=self._notifier)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        data_dir: Path | None = None,
        provider: AIClient | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        store: DocumentRecordStore | None = None,
        notifier: Notifier | None = None,
    ) -> "ChatSession":
        root = data_dir or default_data_dir()
        client = provider or AIClient(
            ClientSettings(
                base_url=settings.base_url,
                api_key=settings.api_key,
                model=settings.model,
                organization=settings.organization,
                request_timeout=settings.request_timeout,
                max_retries=settings.max_retries,
                retry_min_seconds=settings.retry_min_seconds,
                retry_max_seconds=settings.retry_max_seconds,
                stream=settings.stream,
                default_headers=settings.default_headers,
                debug_logging=settings.debug,
            )
        )
        embedder = embedding_provider or OpenAIEmbeddingProvider(
            client=lambda: client.openai,
            model=settings.embedding_model,
            requests_per_minute=settings.embedding_requests_per_minute or None,
        )
        cache = DocumentCache(
            store or SQLiteDocumentStore(root / _STORE_FILENAME),
            embedder,
            chunk_chars=settings.chunk_chars,
            chunk_overlap=settings.chunk_overlap,
        )
        return cls(
            settings=settings,
            provider=client,
            document_cache=cache,
            notifier=notifier,
            prompt_library=PromptLibrary(root / _PROMPTS_FILENAME),
        )

    @property
    def chat_log(self) -> ChatLog:
        return self._chat_log

    @property
    def controller(self) -> ConversationController:
        return self._controller

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    @property
    def document_cache(self) -> DocumentCache:
        return self._cache

    @property
    def prompt_library(self) -> PromptLibrary | None:
        return self._prompt_library

    @property
    def grounded_on(self) -> DocumentRecord | None:
        return self._grounded_on

    @property
    def settings(self) -> Settings:
        return self._settings

    def update_settings(self, settings: Settings) -> None:
        """Apply edited settings to later generations; history and memory are kept."""

        self._settings = settings
        self._controller.update_config(settings.model_config())
        _LOGGER.debug("Session settings updated (model=%s)", settings.model)

    async def start(self) -> int:
        """Run the startup TTL sweep; returns the number of evicted records."""

        try:
            removed = await self._cache.evict_expired(self._settings.ttl_days)
        except StoreError as exc:
            self._notifier(exc)
            return 0
        if removed:
            _LOGGER.info("Startup sweep removed %d expired document record(s)", removed)
        return removed

    def send_user_message(self, text: str) -> GenerationHandle | None:
        """Append a visible user message and start generating the reply."""

        if not text or not text.strip():
            self._notifier(InputError())
            return None
        message = self._chat_log.append(ChatMessage.user(text))
        return self._controller.send_message(message)

    def trigger(self, name: str, selected_text: str, parameter: str | None = None) -> GenerationHandle | None:
        return self._dispatcher.dispatch(name, selected_text, parameter)

    def apply_custom_prompt(self, title: str, selected_text: str) -> GenerationHandle | None:
        """Run the library prompt named *title* against *selected_text*."""

        if self._prompt_library is None:
            raise RuntimeError("No prompt library is configured for this session")
        try:
            template = self._prompt_library.get(title).prompt
        except CopilotError as exc:
            self._notifier(exc)
            return None
        return self._dispatcher.dispatch("applyCustomPromptSelection", selected_text, template)

    async def ground_on_note(
        self,
        content: str,
        name: str,
        *,
        activate: bool | None = None,
    ) -> DocumentRecord | None:
        """Embed (or reuse) the note and optionally switch to grounded mode.

        When *activate* is ``None`` the session only retargets if it is
        already grounded on a document.
        """

        try:
            record = await self._cache.get_or_create(content, source_name=name)
        except CopilotError as exc:
            self._notifier(exc)
            return None
        self._chat_log.append(ChatMessage.assistant(f"Reading [[{name}]]..."))
        should_activate = self._controller.mode.grounded if activate is None else activate
        if should_activate:
            await self._controller.switch_mode(DocumentGrounded(record.content_hash))
        self._grounded_on = record
        return record

    async def use_plain_chat(self) -> None:
        await self._controller.switch_mode(PlainChat())

    def new_conversation(self) -> None:
        self._controller.new_conversation()

    async def clear_document_store(self) -> bool:
        """Wipe every cached record.

        The generation mode is left alone: a grounded session keeps pointing
        at the cleared document, so the next message fails with a cache-miss
        notice until the note is grounded again.
        """

        try:
            removed = await self._cache.clear_all()
        except StoreError as exc:
            self._notifier(exc)
            return False
        self._grounded_on = None
        _LOGGER.info("Local vector store cleared successfully (%d record(s)).", removed)
        return True

    def save_as_note(self, folder: Path | str | None = None) -> Path:
        return save_chat_as_note(self._chat_log, folder or self._settings.default_save_folder)

    async def aclose(self) -> None:
        await self._controller.aclose()
        self._cache.close()


def _log_notice(error: CopilotError) -> None:
    _LOGGER.warning("Notice: %s", error.as_notice())


def _print_notice(error: CopilotError) -> None:
    print(f"\n[notice] {error.as_notice()}", file=sys.stderr)


async def _stream_to_stdout(handle: GenerationHandle | None) -> None:
    if handle is None:
        return
    async for delta in handle:
        sys.stdout.write(delta)
        sys.stdout.flush()
    sys.stdout.write("\n")


async def _repl(session: ChatSession, note: Path | None) -> None:
    await session.start()
    if note is not None:
        await session.ground_on_note(read_text(note), note.stem, activate=True)
    loop = asyncio.get_running_loop()
    print("Type a message, /help for commands, /quit to exit.")
    while True:
        try:
            line = await loop.run_in_executor(None, input, "> ")
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue
        if not line.startswith("/"):
            await _stream_to_stdout(session.send_user_message(line))
            continue
        command, _, rest = line[1:].partition(" ")
        if command in {"quit", "exit"}:
            break
        if command == "help":
            print("/new  /save [folder]  /note PATH  /plain  /clear-store  /commands  /<command> [--param VALUE] TEXT")
        elif command == "new":
            session.new_conversation()
        elif command == "save":
            print(f"Saved to {session.save_as_note(rest.strip() or None)}")
        elif command == "note":
            path = Path(rest.strip()).expanduser()
            await session.ground_on_note(read_text(path), path.stem, activate=True)
            print(session.chat_log.messages[-1].content if session.chat_log.messages else "")
        elif command == "plain":
            await session.use_plain_chat()
        elif command == "clear-store":
            if await session.clear_document_store():
                print("Local vector store cleared successfully.")
        elif command == "commands":
            print("\n".join(session.dispatcher.names))
        elif command in session.dispatcher.names:
            parameter, text = _split_parameter(rest)
            await _stream_to_stdout(session.trigger(command, text, parameter))
            if command == "countTokensSelection" and session.chat_log.messages:
                print(session.chat_log.messages[-1].content)
        else:
            print(f"Unknown command: /{command}")
    await session.aclose()


def _split_parameter(rest: str) -> tuple[str | None, str]:
    match = _PARAM_RE.match(rest)
    if match is None:
        return None, rest
    value = next(group for group in match.group("dq", "sq", "bare") if group is not None)
    return value, match.group("text")


async def _sweep_store(session: ChatSession) -> int:
    try:
        return await session.start()
    finally:
        await session.aclose()


async def _clear_store(session: ChatSession) -> bool:
    try:
        return await session.clear_document_store()
    finally:
        await session.aclose()


def _has_api_key(settings: Settings) -> bool:
    return bool(settings.api_key.strip() or os.environ.get("OPENAI_API_KEY", "").strip())


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="notecopilot",
        description="Chat with a language model about your notes.",
    )
    parser.add_argument("--settings-path", metavar="PATH", help="Override ~/.notecopilot/settings.json.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command")
    chat = subparsers.add_parser("chat", help="Start an interactive chat session (default).")
    chat.add_argument("--note", metavar="PATH", help="Ground the conversation on a Markdown note.")
    subparsers.add_parser("sweep-store", help="Remove document records older than ttl_days.")
    subparsers.add_parser("clear-store", help="Remove every cached document record.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `notecopilot` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or os.environ.get("NOTECOPILOT_DEBUG", "").strip().lower() in _TRUE_VALUES
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("NOTECOPILOT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings = load_settings(resolved_path)
    if settings.debug and not debug:
        configure_logging(True, force=True)

    command = args.command or "chat"
    if command == "chat" and not _has_api_key(settings):
        _print_notice(
            ProviderError(
                error_code=ErrorCode.PROVIDER_AUTH,
                message="No API key is configured.",
                suggestion="Set NOTECOPILOT_API_KEY or add the key to the settings file.",
            )
        )
        return 1
    session = ChatSession.from_settings(settings, notifier=_print_notice)
    try:
        if command == "sweep-store":
            removed = asyncio.run(_sweep_store(session))
            print(f"Removed {removed} expired document record(s).")
        elif command == "clear-store":
            if not asyncio.run(_clear_store(session)):
                return 1
            print("Local vector store cleared successfully.")
        else:
            note = Path(args.note).expanduser() if getattr(args, "note", None) else None
            asyncio.run(_repl(session, note))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    return 0


__all__ = ["ChatSession", "configure_logging", "load_settings", "main"]
