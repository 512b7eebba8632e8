"""In-process telemetry events for hosts that want to observe the engine."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

LOGGER = logging.getLogger(__name__)

_EVENT_LISTENERS: dict[str, list[Callable[[dict[str, Any]], None]]] = {}


def register_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if not listeners:
        return
    if callback in listeners:
        listeners.remove(callback)
    if not listeners:
        _EVENT_LISTENERS.pop(event_name, None)


def clear_event_listeners() -> None:
    _EVENT_LISTENERS.clear()


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload: dict[str, Any] = {"event": event_name}
    if payload:
        event_payload.update(payload)
    for callback in list(_EVENT_LISTENERS.get(event_name, ())):
        try:
            callback(dict(event_payload))
        except Exception:  # listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


__all__ = [
    "clear_event_listeners",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
]
