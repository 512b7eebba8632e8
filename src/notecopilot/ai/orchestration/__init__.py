"""Conversation orchestration."""

from .controller import ConversationController, GenerationHandle, Notifier

__all__ = ["ConversationController", "GenerationHandle", "Notifier"]
