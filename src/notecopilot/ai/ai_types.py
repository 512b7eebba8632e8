"""Shared typing contracts for AI infrastructure."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, AsyncGenerator, Mapping, Protocol, Sequence, Union


class TokenCounterProtocol(Protocol):
    """Protocol describing tokenizer implementations."""

    model_name: str | None

    def count(self, text: str) -> int:
        """Return the precise token count for *text*."""
        ...

    def estimate(self, text: str) -> int:
        """Return a deterministic fallback estimate when precise counts fail."""
        ...


@dataclass(slots=True, frozen=True)
class ModelOverrides:
    """Per-call adjustments layered over a :class:`ModelConfig`."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None

    def as_updates(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(slots=True, frozen=True)
class ModelConfig:
    """Immutable generation configuration passed through to the provider.

    Instances are never mutated; :meth:`merged` returns a new value so that
    overlapping calls cannot observe each other's overrides.
    """

    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int | None = 1_000
    system_prompt: str = ""
    context_turns: int = 3

    def merged(self, overrides: ModelOverrides | None = None) -> "ModelConfig":
        if overrides is None:
            return self
        updates = overrides.as_updates()
        if not updates:
            return self
        return replace(self, **updates).clamp()

    def clamp(self) -> "ModelConfig":
        """Return a copy with values pulled into safe operating ranges."""

        temperature = min(2.0, max(0.0, float(self.temperature)))
        max_tokens = self.max_tokens
        if max_tokens is not None:
            max_tokens = max(1, int(max_tokens))
        turns = max(0, int(self.context_turns))
        return replace(self, temperature=temperature, max_tokens=max_tokens, context_turns=turns)


class ChatProvider(Protocol):
    """Model provider surface consumed by the conversation controller."""

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        config: ModelConfig,
    ) -> AsyncGenerator[str, None]:
        """Yield text deltas for *messages*; raise on provider failure.

        The generator is closed as soon as the caller stops consuming it.
        """
        ...

    def count_tokens(self, text: str) -> int:
        """Return the provider tokenizer's count for *text*."""
        ...


@dataclass(slots=True, frozen=True)
class PlainChat:
    """Generation without document grounding."""

    @property
    def grounded(self) -> bool:
        return False

    def describe(self) -> str:
        return "chat"


@dataclass(slots=True, frozen=True)
class DocumentGrounded:
    """Generation grounded on the document identified by ``document_hash``."""

    document_hash: str

    @property
    def grounded(self) -> bool:
        return True

    def describe(self) -> str:
        return f"grounded:{self.document_hash[:12]}"


GenerationMode = Union[PlainChat, DocumentGrounded]


class GenerationState(str, Enum):
    """Lifecycle of a single streamed generation."""

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def finished(self) -> bool:
        return self in {GenerationState.COMPLETED, GenerationState.CANCELLED, GenerationState.FAILED}


__all__ = [
    "ChatProvider",
    "DocumentGrounded",
    "GenerationMode",
    "GenerationState",
    "ModelConfig",
    "ModelOverrides",
    "PlainChat",
    "TokenCounterProtocol",
]
