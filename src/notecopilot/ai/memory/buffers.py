"""Model-side conversational memory."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, cast

from openai.types.chat import ChatCompletionMessageParam

MemoryRole = Literal["user", "assistant"]
TokenCounter = Callable[[str], int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_token_estimator(text: str) -> int:
    if not text:
        return 0
    return max(1, len(text.split()))


@dataclass(slots=True)
class ConversationMessage:
    """Individual turn stored inside :class:`ConversationMemory`."""

    role: MemoryRole
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    token_count: int = 0

    def to_chat_param(self) -> ChatCompletionMessageParam:
        return cast(ChatCompletionMessageParam, {"role": self.role, "content": self.content})


class ConversationMemory:
    """Rolling window of completed exchanges replayed into each request.

    Only exchanges that finished successfully are recorded, so cancelled or
    failed generations never leak into later prompts. The window keeps the
    most recent ``max_turns`` user/assistant pairs and, optionally, stays
    under ``max_tokens``.
    """

    def __init__(
        self,
        *,
        max_turns: int = 3,
        max_tokens: int = 0,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self._max_turns = max(0, int(max_turns))
        self._max_tokens = max_tokens if max_tokens > 0 else 0
        self._token_counter = token_counter or _default_token_estimator
        self._messages: list[ConversationMessage] = []
        self._total_tokens = 0

    @property
    def max_turns(self) -> int:
        return self._max_turns

    @max_turns.setter
    def max_turns(self, value: int) -> None:
        self._max_turns = max(0, int(value))
        self._trim()

    def record_exchange(self, user_content: str, assistant_content: str) -> None:
        for role, content in (("user", user_content), ("assistant", assistant_content)):
            message = ConversationMessage(role=cast(MemoryRole, role), content=content)
            message.token_count = self._token_counter(content)
            self._messages.append(message)
            self._total_tokens += message.token_count
        self._trim()

    def clear(self) -> None:
        self._messages.clear()
        self._total_tokens = 0

    def _trim(self) -> None:
        limit = self._max_turns * 2
        while len(self._messages) > limit:
            removed = self._messages.pop(0)
            self._total_tokens -= removed.token_count

        if self._max_tokens:
            while self._total_tokens > self._max_tokens and len(self._messages) > 2:
                for _ in range(2):
                    removed = self._messages.pop(0)
                    self._total_tokens -= removed.token_count

    def as_chat_params(self) -> list[ChatCompletionMessageParam]:
        return [message.to_chat_param() for message in self._messages]

    def get_messages(self) -> list[ConversationMessage]:
        return list(self._messages)

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    def __len__(self) -> int:
        return len(self._messages)

    def snapshot(self) -> dict[str, Any]:
        return {
            "message_count": len(self._messages),
            "total_tokens": self._total_tokens,
            "max_turns": self._max_turns,
            "max_tokens": self._max_tokens,
        }


__all__ = ["ConversationMemory", "ConversationMessage"]
