"""File IO helpers for notes, prompt libraries and exports."""

from __future__ import annotations

import codecs
import os
import re
import tempfile
from pathlib import Path

__all__ = ["read_text", "write_text", "safe_filename"]

_BOM_MAP: dict[bytes, str] = {
    codecs.BOM_UTF8: "utf-8-sig",
    codecs.BOM_UTF16_LE: "utf-16-le",
    codecs.BOM_UTF16_BE: "utf-16-be",
}
_UNSAFE_CHARS = re.compile(r"[\\/:*?\"<>|]")


def read_text(path: Path | str, *, encoding: str | None = None, errors: str = "strict") -> str:
    """Read a note with BOM detection and ``\\n`` newlines."""

    raw = Path(path).read_bytes()
    detected = encoding or _detect_encoding(raw)
    text = raw.decode(detected, errors=errors)
    if text.startswith("\ufeff"):
        text = text[1:]
    return _normalize_newlines(text)


def write_text(path: Path | str, content: str, *, encoding: str = "utf-8", atomic: bool = True) -> Path:
    """Write text to disk, replacing the target atomically by default."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    normalized = _normalize_newlines(content)
    if not atomic:
        with target.open("w", encoding=encoding, newline="") as handle:
            handle.write(normalized)
        return target

    descriptor, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            handle.write(normalized)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def safe_filename(name: str) -> str:
    """Replace characters that note vaults reject in file names."""

    cleaned = _UNSAFE_CHARS.sub("-", name).strip()
    return cleaned or "untitled"


def _detect_encoding(raw: bytes) -> str:
    for bom, encoding in _BOM_MAP.items():
        if raw.startswith(bom):
            return encoding
    try:
        raw.decode("utf-8")
    except UnicodeDecodeError:
        return "latin-1"
    return "utf-8"


def _normalize_newlines(text: str) -> str:
    if "\r" not in text:
        return text
    return text.replace("\r\n", "\n").replace("\r", "\n")
