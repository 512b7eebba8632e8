"""Export the visible chat history into a Markdown note."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from ..chat.message_model import ChatLog
from ..utils.file_io import write_text

LOGGER = logging.getLogger(__name__)

NOTE_PREFIX = "Chat-"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def export_filename(now: datetime) -> str:
    return f"{NOTE_PREFIX}{now.strftime(TIMESTAMP_FORMAT)}.md"


def save_chat_as_note(chat_log: ChatLog, folder: Path | str, *, now: datetime | None = None) -> Path:
    """Write the rendered chat history to ``<folder>/Chat-<timestamp>.md``.

    The folder is created when missing. Messages that were never rendered
    (invisible command prompts) are left out, matching what the user saw.
    An existing note with the same timestamp is not overwritten; a numeric
    suffix is added instead.
    """

    instant = now or datetime.now()
    target_dir = Path(folder).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / export_filename(instant)
    counter = 1
    while target.exists():
        target = target_dir / f"{NOTE_PREFIX}{instant.strftime(TIMESTAMP_FORMAT)}-{counter}.md"
        counter += 1
    write_text(target, chat_log.to_markdown())
    LOGGER.info("Saved chat history (%d messages) to %s", len(chat_log.visible_messages()), target)
    return target


__all__ = ["save_chat_as_note", "export_filename"]
