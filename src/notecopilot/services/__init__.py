"""Service layer helpers (settings, telemetry, prompt library, export)."""

from .telemetry import emit, register_event_listener, unregister_event_listener

__all__ = ["emit", "register_event_listener", "unregister_event_listener"]
