"""Persistent key-value stores backing the document cache."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Protocol

from .records import DocumentRecord

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StoredEntry:
    """Key and insertion time of a stored record, as returned by scans."""

    content_hash: str
    inserted_at: float


class DocumentRecordStore(Protocol):
    """Key-value interface keyed by content hash."""

    def put(self, record: DocumentRecord) -> bool:
        """Insert *record* unless its hash exists; return ``True`` when inserted."""

    def get(self, content_hash: str) -> DocumentRecord | None:
        """Return the record stored under *content_hash*."""

    def scan(self) -> list[StoredEntry]:
        """Return every stored key with its insertion time, oldest first."""

    def delete(self, content_hash: str) -> bool:
        """Remove the record under *content_hash*; return ``True`` if present."""

    def destroy_all(self) -> int:
        """Remove every record and return how many were dropped."""


class InMemoryDocumentStore:
    """Process-local store used for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._records: dict[str, DocumentRecord] = {}
        self._lock = RLock()

    def put(self, record: DocumentRecord) -> bool:
        with self._lock:
            if record.content_hash in self._records:
                return False
            self._records[record.content_hash] = record
            return True

    def get(self, content_hash: str) -> DocumentRecord | None:
        with self._lock:
            return self._records.get(content_hash)

    def scan(self) -> list[StoredEntry]:
        with self._lock:
            entries = [StoredEntry(key, record.inserted_at) for key, record in self._records.items()]
        return sorted(entries, key=lambda entry: entry.inserted_at)

    def delete(self, content_hash: str) -> bool:
        with self._lock:
            return self._records.pop(content_hash, None) is not None

    def destroy_all(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SQLiteDocumentStore:
    """SQLite-backed persistence for document records."""

    def __init__(self, db_path: Path | str) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._lock = RLock()
        self._create_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _create_schema(self) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS document_records (
                        content_hash TEXT PRIMARY KEY,
                        source_name TEXT NOT NULL,
                        inserted_at REAL NOT NULL,
                        payload TEXT NOT NULL
                    )
                    """
                )
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_document_records_age ON document_records(inserted_at)"
                )

    def put(self, record: DocumentRecord) -> bool:
        payload = json.dumps(record.to_payload(), ensure_ascii=False)
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO document_records (content_hash, source_name, inserted_at, payload)
                    VALUES (?, ?, ?, ?)
                    """,
                    (record.content_hash, record.source_name, record.inserted_at, payload),
                )
        return cursor.rowcount > 0

    def get(self, content_hash: str) -> DocumentRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM document_records WHERE content_hash = ?",
                (content_hash,),
            ).fetchone()
        if row is None:
            return None
        return DocumentRecord.from_payload(json.loads(row["payload"]))

    def scan(self) -> list[StoredEntry]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT content_hash, inserted_at FROM document_records ORDER BY inserted_at"
            ).fetchall()
        return [StoredEntry(row["content_hash"], float(row["inserted_at"])) for row in rows]

    def delete(self, content_hash: str) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM document_records WHERE content_hash = ?",
                    (content_hash,),
                )
        return cursor.rowcount > 0

    def destroy_all(self) -> int:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute("DELETE FROM document_records")
        return max(0, cursor.rowcount)

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error:
                LOGGER.debug("Failed to close document store", exc_info=True)


__all__ = [
    "DocumentRecordStore",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
    "StoredEntry",
]
