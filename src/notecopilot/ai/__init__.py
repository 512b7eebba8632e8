"""AI client, prompts and generation types."""

from .client import AIClient, ApproxByteCounter, ClientSettings, TokenCounterRegistry

__all__ = ["AIClient", "ClientSettings", "TokenCounterRegistry", "ApproxByteCounter"]
