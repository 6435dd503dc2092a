"""SQLite catalog of ingested documents and their last indexed versions."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from sitefinder.index.filters import Equals, Predicate, compile_predicates
from sitefinder.models import DocumentUpdate, IngestedDocument

FILTERABLE_FIELDS = ("source_id", "id", "version")


class DocumentCatalog:
    """Persistence layer for :class:`IngestedDocument` rows.

    Rows are partitioned by ``source_id``; ``(source_id, id)`` is unique.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    source_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    version TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (source_id, id)
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_updated
                AFTER UPDATE OF version ON documents
                BEGIN
                    UPDATE documents SET updated_at = CURRENT_TIMESTAMP
                    WHERE source_id = NEW.source_id AND id = NEW.id;
                END;
                """
            )

    def find(self, *predicates: Predicate) -> List[IngestedDocument]:
        where, params = compile_predicates(predicates, allowed_fields=FILTERABLE_FIELDS)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT source_id, id, version FROM documents WHERE {where} ORDER BY source_id, id",
                params,
            ).fetchall()
        return [
            IngestedDocument(id=row["id"], source_id=row["source_id"], version=row["version"])
            for row in rows
        ]

    def find_one(self, *predicates: Predicate) -> IngestedDocument | None:
        matches = self.find(*predicates)
        return matches[0] if matches else None

    def apply_update(self, update: DocumentUpdate) -> str:
        """Record that ``update`` was indexed.

        Returns ``"inserted"`` for a document new to the catalog, otherwise
        ``"updated"``.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE documents SET version = ? WHERE source_id = ? AND id = ?",
                (update.version, update.source_id, update.id),
            )
            if cursor.rowcount:
                return "updated"
            conn.execute(
                "INSERT INTO documents(source_id, id, version) VALUES (?, ?, ?)",
                (update.source_id, update.id, update.version),
            )
            return "inserted"

    def delete(self, document: IngestedDocument) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE source_id = ? AND id = ?",
                (document.source_id, document.id),
            )
            return cursor.rowcount > 0

    def list_sources(self) -> List[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT source_id FROM documents ORDER BY source_id"
            ).fetchall()
        return [row["source_id"] for row in rows]

    def count(self, source_id: str | None = None) -> int:
        predicates = [Equals("source_id", source_id)] if source_id is not None else []
        where, params = compile_predicates(predicates, allowed_fields=FILTERABLE_FIELDS)
        with self._lock:
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM documents WHERE {where}", params
            ).fetchone()
        return int(row[0])
