"""Chat orchestration for note-taking apps: streaming chat, grounding and selection commands."""

__version__ = "0.1.0"

__all__ = ["__version__"]
