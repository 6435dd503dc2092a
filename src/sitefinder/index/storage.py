"""SQLite vector store for page chunk records."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple

import numpy as np

from sitefinder.index.filters import Equals, compile_predicates
from sitefinder.models import SearchRecord

DEFAULT_COLLECTION = "data-sitefinder-ingested"

FILTERABLE_FIELDS = ("key", "url")


class SQLiteVectorStore:
    """Named collections of :class:`SearchRecord`, keyed by record key."""

    def __init__(self, db_path: Path, *, dimension: int) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
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
                CREATE TABLE IF NOT EXISTS records (
                    collection TEXT NOT NULL,
                    key TEXT NOT NULL,
                    url TEXT NOT NULL,
                    text TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, key)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_records_url
                    ON records(collection, url)
                """
            )

    def _check_vector(self, record: SearchRecord) -> bytes:
        vector = np.asarray(record.vector, dtype="float32")
        if vector.shape != (self.dimension,):
            raise ValueError(
                f"Record {record.key} has vector shape {vector.shape}, "
                f"expected ({self.dimension},)"
            )
        return vector.tobytes()

    def _insert(self, conn: sqlite3.Connection, collection: str, records: Sequence[SearchRecord]) -> None:
        rows = [
            (collection, record.key, record.url, record.text, sqlite3.Binary(self._check_vector(record)))
            for record in records
        ]
        conn.executemany(
            """
            INSERT OR REPLACE INTO records(collection, key, url, text, embedding)
            VALUES (?, ?, ?, ?, ?)
            """,
            rows,
        )

    def upsert(self, collection: str, records: Sequence[SearchRecord]) -> None:
        """Insert or overwrite records by key."""
        with self.transaction() as conn:
            self._insert(conn, collection, records)

    def replace_document(self, collection: str, url: str, records: Sequence[SearchRecord]) -> int:
        """Swap every record of a page for ``records`` in one transaction.

        Returns the number of stale records removed. Chunk keys beyond the new
        chunk count would otherwise survive a plain upsert.
        """
        with self.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM records WHERE collection = ? AND url = ?", (collection, url)
            ).rowcount
            self._insert(conn, collection, records)
        return removed

    def delete_document(self, collection: str, url: str) -> int:
        with self.transaction() as conn:
            return conn.execute(
                "DELETE FROM records WHERE collection = ? AND url = ?", (collection, url)
            ).rowcount

    def search(
        self,
        collection: str,
        embedding: np.ndarray,
        *,
        top: int = 10,
        filter: Equals | None = None,
    ) -> List[Tuple[SearchRecord, float]]:
        """Return up to ``top`` records by descending dot-product similarity."""
        query = np.asarray(embedding, dtype="float32")
        where, params = compile_predicates(
            [filter] if filter is not None else [], allowed_fields=FILTERABLE_FIELDS
        )
        with self._lock:
            rows = self._conn.execute(
                f"""
                SELECT key, url, text, embedding
                FROM records
                WHERE collection = ? AND {where}
                ORDER BY key
                """,
                [collection, *params],
            ).fetchall()

        if not rows or top <= 0:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        scores = embeddings @ query

        # Stable sort on negated scores keeps key order among ties
        top_indices = np.argsort(-scores, kind="stable")[:top]

        results: List[Tuple[SearchRecord, float]] = []
        for idx in top_indices:
            row = rows[idx]
            record = SearchRecord(
                key=row["key"],
                url=row["url"],
                text=row["text"],
                vector=embeddings[idx],
            )
            results.append((record, float(scores[idx])))
        return results

    def get_stats(self, collection: str) -> dict[str, int]:
        with self._lock:
            row = self._conn.execute(
                """
                SELECT COUNT(*) AS record_count, COUNT(DISTINCT url) AS document_count
                FROM records WHERE collection = ?
                """,
                (collection,),
            ).fetchone()
        return {"record_count": int(row["record_count"]), "document_count": int(row["document_count"])}
