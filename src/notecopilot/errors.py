"""Error types surfaced by the chat orchestrator.

Every error carries a machine-readable code, a human-readable message and an
optional suggestion so hosts can render a notice without inspecting the
exception type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for error codes attached to :class:`CopilotError`."""

    EMPTY_SELECTION = "empty_selection"
    EMPTY_MESSAGE = "empty_message"
    EMPTY_DOCUMENT = "empty_document"
    PROVIDER_FAILURE = "provider_failure"
    PROVIDER_AUTH = "provider_auth"
    PROVIDER_RATE_LIMIT = "provider_rate_limit"
    PROVIDER_TIMEOUT = "provider_timeout"
    CACHE_MISS = "cache_miss"
    STORE_UNAVAILABLE = "store_unavailable"
    PROMPT_NOT_FOUND = "prompt_not_found"
    PROMPT_EXISTS = "prompt_exists"


@dataclass
class CopilotError(Exception):
    """Base exception for all orchestrator errors."""

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def as_notice(self) -> str:
        """Render the error as a short user-facing notice."""

        if self.suggestion:
            return f"{self.message} {self.suggestion}"
        return self.message

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class InputError(CopilotError):
    """Raised when the user supplied nothing to work with."""

    error_code: str = field(default=ErrorCode.EMPTY_MESSAGE)
    message: str = field(default="Message is empty.")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    severity: ClassVar[str] = "warning"

    @classmethod
    def empty_selection(cls) -> "InputError":
        return cls(
            error_code=ErrorCode.EMPTY_SELECTION,
            message="No text selected.",
            suggestion="You may need to set up a keyboard shortcut so your selection is not lost when executing this command.",
        )


@dataclass
class ProviderError(CopilotError):
    """Raised when the model or embedding provider fails."""

    error_code: str = field(default=ErrorCode.PROVIDER_FAILURE)
    message: str = field(default="The model provider request failed.")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check your API key, network connection and model settings.")

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ProviderError":
        """Classify a provider exception into a user-facing error."""

        # Imported lazily so error classification stays usable without network stacks.
        import httpx
        from openai import APIConnectionError, APITimeoutError, AuthenticationError, RateLimitError

        if isinstance(exc, ProviderError):
            return exc
        detail = str(exc)[:200]
        if isinstance(exc, AuthenticationError):
            return cls(
                error_code=ErrorCode.PROVIDER_AUTH,
                message="The model provider rejected the API key.",
                details={"error": detail},
                suggestion="Update the API key in settings.",
            )
        if isinstance(exc, RateLimitError):
            return cls(
                error_code=ErrorCode.PROVIDER_RATE_LIMIT,
                message="The model provider is rate limiting requests.",
                details={"error": detail},
                suggestion="Wait a moment and try again.",
            )
        if isinstance(exc, (APITimeoutError, httpx.TimeoutException, TimeoutError)):
            return cls(
                error_code=ErrorCode.PROVIDER_TIMEOUT,
                message="The model provider timed out.",
                details={"error": detail},
                suggestion="Try again or raise the request timeout.",
            )
        if isinstance(exc, APIConnectionError):
            return cls(message="Could not reach the model provider.", details={"error": detail})
        return cls(message=f"The model provider request failed: {detail}", details={"type": type(exc).__name__})


@dataclass
class CacheMissError(CopilotError):
    """Raised when grounding is requested for a document with no record."""

    error_code: str = field(default=ErrorCode.CACHE_MISS)
    message: str = field(default="No embedded record exists for this document.")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Index the note before switching to grounded mode.")

    document_hash: str | None = field(default=None)


@dataclass
class StoreError(CopilotError):
    """Raised when the document record store or embedding step fails."""

    error_code: str = field(default=ErrorCode.STORE_UNAVAILABLE)
    message: str = field(default="The document store is unavailable.")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Try clearing the local vector store.")


@dataclass
class PromptLibraryError(CopilotError):
    """Raised by the custom prompt library."""

    error_code: str = field(default=ErrorCode.PROMPT_NOT_FOUND)
    message: str = field(default="No prompt found.")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


__all__ = [
    "CacheMissError",
    "CopilotError",
    "ErrorCode",
    "InputError",
    "PromptLibraryError",
    "ProviderError",
    "StoreError",
]
