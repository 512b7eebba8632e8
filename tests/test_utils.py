"""Tests covering the utilities modules."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from notecopilot.utils import file_io, logging as logging_utils


def test_read_text_detects_bom_and_normalizes_newlines(tmp_path: Path) -> None:
    target = tmp_path / "utf16.txt"
    target.write_bytes("Line1\r\nLine2".encode("utf-16"))

    result = file_io.read_text(target)

    assert result == "Line1\nLine2"


def test_read_text_strips_utf8_bom(tmp_path: Path) -> None:
    target = tmp_path / "note.md"
    target.write_bytes(b"\xef\xbb\xbf# Title\rBody")

    assert file_io.read_text(target) == "# Title\nBody"


def test_write_text_creates_parents_and_normalizes(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "output.md"

    returned = file_io.write_text(target, "Line1\r\nLine2")

    assert returned == target
    assert target.read_bytes() == b"Line1\nLine2"
    assert [path.name for path in target.parent.iterdir()] == ["output.md"]


def test_safe_filename_replaces_reserved_characters() -> None:
    assert file_io.safe_filename('a/b:c*?"d') == "a-b-c---d"
    assert file_io.safe_filename("   ") == "untitled"


def test_setup_logging_writes_rotating_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("NOTECOPILOT_LOG_DIR", str(tmp_path))
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    previous_level = root.level
    try:
        log_path = logging_utils.setup_logging(logging.DEBUG, console=False, force=True)
        logging.getLogger("notecopilot.test").debug("hello from the test")
        for handler in root.handlers:
            handler.flush()

        assert log_path == tmp_path / "notecopilot.log"
        assert logging_utils.get_log_path() == log_path
        assert "hello from the test" in log_path.read_text(encoding="utf-8")
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)
