"""Document record model and its persisted layout."""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from jsonschema import Draft7Validator, ValidationError

from .embeddings import Vector

_WHITESPACE_RE = re.compile(r"\s+")

RECORD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["contentHash", "sourceName", "embeddingVector", "insertedAt"],
    "properties": {
        "contentHash": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        "sourceName": {"type": "string"},
        "embeddingVector": {"type": "array", "items": {"type": "number"}},
        "insertedAt": {"type": "number", "minimum": 0},
        "content": {"type": "string"},
        "passages": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["index", "text", "vector"],
                "properties": {
                    "index": {"type": "integer", "minimum": 0},
                    "text": {"type": "string"},
                    "vector": {"type": "array", "items": {"type": "number"}},
                },
            },
        },
    },
}
_VALIDATOR = Draft7Validator(RECORD_SCHEMA)


def normalize_content(text: str) -> str:
    """Collapse whitespace runs to single spaces and strip the ends."""

    return _WHITESPACE_RE.sub(" ", text or "").strip()


def content_hash(text: str) -> str:
    """Return the content address of *text* (SHA-256 over normalized text)."""

    return hashlib.sha256(normalize_content(text).encode("utf-8")).hexdigest()


def now_ms() -> float:
    return time.time() * 1000.0


@dataclass(slots=True, frozen=True)
class Passage:
    """A retrievable slice of a document together with its embedding."""

    index: int
    text: str
    vector: Vector

    def to_payload(self) -> dict[str, Any]:
        return {"index": self.index, "text": self.text, "vector": list(self.vector)}


@dataclass(slots=True, frozen=True)
class DocumentRecord:
    """Embedded document keyed by the hash of its normalized content."""

    content_hash: str
    source_name: str
    embedding_vector: Vector
    inserted_at: float
    content: str = ""
    passages: tuple[Passage, ...] = field(default_factory=tuple)

    def age_ms(self, now: float) -> float:
        return now - self.inserted_at

    def to_payload(self) -> dict[str, Any]:
        """Serialize using the persisted camelCase layout."""

        return {
            "contentHash": self.content_hash,
            "sourceName": self.source_name,
            "embeddingVector": list(self.embedding_vector),
            "insertedAt": self.inserted_at,
            "content": self.content,
            "passages": [passage.to_payload() for passage in self.passages],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DocumentRecord":
        """Validate and deserialize a persisted record.

        Raises:
            ValueError: when the payload does not match :data:`RECORD_SCHEMA`.
        """

        try:
            _VALIDATOR.validate(dict(payload))
        except ValidationError as exc:
            raise ValueError(f"Invalid document record payload: {exc.message}") from exc
        passages = tuple(
            Passage(
                index=int(item["index"]),
                text=str(item["text"]),
                vector=tuple(float(value) for value in item["vector"]),
            )
            for item in payload.get("passages", ())
        )
        return cls(
            content_hash=str(payload["contentHash"]),
            source_name=str(payload["sourceName"]),
            embedding_vector=tuple(float(value) for value in payload["embeddingVector"]),
            inserted_at=float(payload["insertedAt"]),
            content=str(payload.get("content", "")),
            passages=passages,
        )


__all__ = [
    "DocumentRecord",
    "Passage",
    "RECORD_SCHEMA",
    "content_hash",
    "normalize_content",
    "now_ms",
]
