"""User-defined prompt templates persisted as JSON."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Mapping

from jsonschema import Draft7Validator

from ..errors import ErrorCode, PromptLibraryError
from ..utils.file_io import write_text

LOGGER = logging.getLogger(__name__)

_LIBRARY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["prompts"],
    "properties": {
        "prompts": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["title", "prompt"],
                "properties": {
                    "title": {"type": "string", "minLength": 1},
                    "prompt": {"type": "string"},
                    "updated_at": {"type": "string"},
                },
            },
        }
    },
}
_VALIDATOR = Draft7Validator(_LIBRARY_SCHEMA)


@dataclass(slots=True, frozen=True)
class CustomPrompt:
    title: str
    prompt: str
    updated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "prompt": self.prompt, "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CustomPrompt":
        return cls(
            title=str(payload["title"]),
            prompt=str(payload["prompt"]),
            updated_at=str(payload.get("updated_at") or datetime.now(timezone.utc).isoformat()),
        )


class PromptLibrary:
    """Title-keyed store of custom prompts.

    Titles are unique; :meth:`add` refuses duplicates and :meth:`edit`,
    :meth:`get` and :meth:`delete` raise when the title is unknown. The
    library is written back after every mutation.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser()
        self._lock = RLock()
        self._prompts: Dict[str, CustomPrompt] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def titles(self) -> list[str]:
        with self._lock:
            return sorted(self._prompts, key=str.lower)

    def __contains__(self, title: object) -> bool:
        return isinstance(title, str) and title.strip() in self._prompts

    def __len__(self) -> int:
        return len(self._prompts)

    def get(self, title: str) -> CustomPrompt:
        key = _normalize_title(title)
        with self._lock:
            prompt = self._prompts.get(key)
        if prompt is None:
            raise _not_found(key)
        return prompt

    def add(self, title: str, prompt: str) -> CustomPrompt:
        key = _normalize_title(title)
        body = _require_prompt(prompt)
        with self._lock:
            if key in self._prompts:
                raise PromptLibraryError(
                    error_code=ErrorCode.PROMPT_EXISTS,
                    message="Error saving custom prompt. Please check if the title already exists.",
                    details={"title": key},
                )
            entry = CustomPrompt(title=key, prompt=body)
            self._prompts[key] = entry
            self._save()
        LOGGER.debug("Added custom prompt %r", key)
        return entry

    def edit(self, title: str, prompt: str) -> CustomPrompt:
        key = _normalize_title(title)
        body = _require_prompt(prompt)
        with self._lock:
            if key not in self._prompts:
                raise _not_found(key)
            entry = CustomPrompt(title=key, prompt=body)
            self._prompts[key] = entry
            self._save()
        return entry

    def delete(self, title: str) -> None:
        key = _normalize_title(title)
        with self._lock:
            if self._prompts.pop(key, None) is None:
                raise _not_found(key)
            self._save()
        LOGGER.debug("Deleted custom prompt %r", key)

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            LOGGER.warning("Prompt library %s is not valid JSON: %s", self._path, exc)
            return
        errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda error: list(error.path))
        if errors:
            LOGGER.warning("Prompt library %s failed validation: %s", self._path, errors[0].message)
            return
        for item in payload["prompts"]:
            entry = CustomPrompt.from_dict(item)
            self._prompts[entry.title.strip()] = entry

    def _save(self) -> None:
        body = {"prompts": [self._prompts[title].to_dict() for title in sorted(self._prompts)]}
        write_text(self._path, json.dumps(body, indent=2, ensure_ascii=False))


def _normalize_title(title: str) -> str:
    key = (title or "").strip()
    if not key:
        raise PromptLibraryError(message="Prompt title must not be empty.", details={"title": title})
    return key


def _require_prompt(prompt: str) -> str:
    body = (prompt or "").strip()
    if not body:
        raise PromptLibraryError(message="Prompt text must not be empty.")
    return body


def _not_found(title: str) -> PromptLibraryError:
    return PromptLibraryError(
        error_code=ErrorCode.PROMPT_NOT_FOUND,
        message=f'No prompt found with the title "{title}".',
        details={"title": title},
    )


__all__ = ["CustomPrompt", "PromptLibrary"]
