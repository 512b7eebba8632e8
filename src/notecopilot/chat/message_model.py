"""Chat message and chat log data models."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Literal, Sequence

LOGGER = logging.getLogger(__name__)

Sender = Literal["user", "assistant"]
USER_SENDER: Sender = "user"
ASSISTANT_SENDER: Sender = "assistant"
LogEventKind = Literal["append", "stream", "stream_end", "clear"]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """Represents a row inside the chat history list."""

    sender: Sender
    content: str
    visible: bool = True
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, content: str, *, visible: bool = True) -> "ChatMessage":
        return cls(sender=USER_SENDER, content=content, visible=visible)

    @classmethod
    def assistant(cls, content: str, *, visible: bool = True) -> "ChatMessage":
        return cls(sender=ASSISTANT_SENDER, content=content, visible=visible)

    def to_chat_param(self) -> Dict[str, str]:
        return {"role": self.sender, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence or export."""

        return {
            "sender": self.sender,
            "content": self.content,
            "visible": self.visible,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class ChatLogEvent:
    """Change notification delivered to chat log observers."""

    kind: LogEventKind
    message: ChatMessage | None = None
    streaming_content: str = ""


ChatLogObserver = Callable[[ChatLogEvent], None]


class ChatLog:
    """Append-only conversation history plus one streaming slot.

    The streaming slot holds the in-flight assistant text and belongs to a
    single owner (the active generation id). Writes from any other owner are
    ignored, which keeps a superseded generation from corrupting the slot.
    """

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._streaming_owner: str | None = None
        self._streaming_content = ""
        self._observers: list[ChatLogObserver] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(list(self._messages))

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def visible_messages(self) -> list[ChatMessage]:
        return [message for message in self._messages if message.visible]

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        self._notify(ChatLogEvent(kind="append", message=message))
        return message

    def recent(self, count: int, *, before: ChatMessage | None = None) -> list[ChatMessage]:
        """Return up to *count* messages preceding *before* (or the end)."""

        if count <= 0:
            return []
        history = self._messages
        if before is not None:
            for index in range(len(history) - 1, -1, -1):
                if history[index] is before:
                    history = history[:index]
                    break
        return list(history[-count:])

    # ------------------------------------------------------------------
    # Streaming slot
    # ------------------------------------------------------------------
    @property
    def streaming_owner(self) -> str | None:
        return self._streaming_owner

    @property
    def streaming_content(self) -> str:
        return self._streaming_content

    @property
    def is_streaming(self) -> bool:
        return self._streaming_owner is not None

    def begin_stream(self, owner: str) -> None:
        """Claim the streaming slot for *owner*, replacing any previous owner."""

        if self._streaming_owner is not None and self._streaming_owner != owner:
            LOGGER.debug("Streaming slot handed from %s to %s", self._streaming_owner, owner)
        self._streaming_owner = owner
        self._streaming_content = ""
        self._notify(ChatLogEvent(kind="stream", streaming_content=""))

    def stream_delta(self, owner: str, delta: str) -> bool:
        if owner != self._streaming_owner:
            return False
        self._streaming_content += delta
        self._notify(ChatLogEvent(kind="stream", streaming_content=self._streaming_content))
        return True

    def end_stream(self, owner: str) -> str:
        """Release the slot held by *owner* and return its transient content."""

        if owner != self._streaming_owner:
            return ""
        content = self._streaming_content
        self._streaming_owner = None
        self._streaming_content = ""
        self._notify(ChatLogEvent(kind="stream_end"))
        return content

    def clear(self) -> None:
        """Drop every message and the streaming slot in one step."""

        self._messages.clear()
        self._streaming_owner = None
        self._streaming_content = ""
        self._notify(ChatLogEvent(kind="clear"))

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, observer: ChatLogObserver) -> Callable[[], None]:
        """Register a rendering observer; returns an unsubscribe callable."""

        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify(self, event: ChatLogEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:  # observer isolation
                LOGGER.exception("Chat log observer failed")

    def to_markdown(self, messages: Sequence[ChatMessage] | None = None) -> str:
        """Render visible history as ``**sender**: message`` blocks."""

        rows = self.visible_messages() if messages is None else list(messages)
        return "\n\n".join(f"**{message.sender}**: {message.content}" for message in rows)


__all__ = [
    "ASSISTANT_SENDER",
    "ChatLog",
    "ChatLogEvent",
    "ChatLogObserver",
    "ChatMessage",
    "Sender",
    "USER_SENDER",
]
