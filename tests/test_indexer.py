"""Tests for Indexer sync passes."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from unittest.mock import Mock

import numpy as np
import pytest

from sitefinder.errors import FetchFailed, ManifestMalformed, ManifestUnavailable
from sitefinder.index.catalog import DocumentCatalog
from sitefinder.index.filters import Equals
from sitefinder.index.indexer import Indexer, SyncStats, source_id_for
from sitefinder.index.storage import SQLiteVectorStore
from sitefinder.models import ManifestEntry

SITE = "https://example.com/"
SOURCE = source_id_for(SITE)
COLLECTION = "pages"


def _page(paragraphs: int) -> str:
    return "\n".join(f"Paragraph {i} has a handful of words." for i in range(paragraphs))


def _loader_factory(pages: dict[str, object], calls: list[str] | None = None):
    def factory(base_url: str):
        assert base_url == SITE

        def fetch(document_id: str) -> str:
            if calls is not None:
                calls.append(document_id)
            content = pages[document_id]
            if isinstance(content, Exception):
                raise content
            return content

        return fetch

    return factory


class TestSyncStats:
    """Test SyncStats tracking."""

    def test_init_defaults(self):
        stats = SyncStats()
        assert (stats.inserted, stats.updated, stats.deleted) == (0, 0, 0)
        assert (stats.unchanged, stats.failed, stats.cancelled) == (0, 0, 0)
        assert stats.failures == {}

    def test_increment(self):
        stats = SyncStats()
        stats.increment("inserted")
        stats.increment("updated")
        stats.increment("deleted")

        assert (stats.inserted, stats.updated, stats.deleted, stats.failed) == (1, 1, 1, 0)
        assert stats.failures == {}

    def test_increment_unknown_status(self):
        with pytest.raises(ValueError):
            SyncStats().increment("skipped")

    def test_record_failure(self):
        stats = SyncStats()
        stats.record_failure("/a", FetchFailed("404"))

        assert stats.failed == 1
        assert stats.failures == {"/a": "FetchFailed: 404"}


class TestSourceId:
    def test_format(self):
        assert source_id_for("https://example.com/") == "web:https://example.com/"


class TestIndexer:
    """Test Indexer against real SQLite stores and fake collaborators."""

    @pytest.fixture
    def db_path(self, tmp_path) -> Path:
        return tmp_path / "sync.db"

    @pytest.fixture
    def store(self, db_path):
        store = SQLiteVectorStore(db_path, dimension=3)
        yield store
        store.close()

    @pytest.fixture
    def catalog(self, db_path):
        catalog = DocumentCatalog(db_path)
        yield catalog
        catalog.close()

    @pytest.fixture
    def embedder(self) -> Mock:
        embedder = Mock()
        embedder.embed.side_effect = lambda texts: np.ones((len(texts), 3), dtype="float32")
        return embedder

    @pytest.fixture
    def reader(self) -> Mock:
        return Mock()

    def _indexer(self, embedder, store, catalog, reader, pages, calls=None, workers=2) -> Indexer:
        return Indexer(
            embedder,
            store,
            catalog,
            manifest_reader=reader,
            loader_factory=_loader_factory(pages, calls),
            collection=COLLECTION,
            max_tokens=16,
            workers=workers,
        )

    def _keys(self, store: SQLiteVectorStore) -> list[str]:
        rows = store.connection.execute("SELECT key FROM records ORDER BY key").fetchall()
        return [row["key"] for row in rows]

    def _versions(self, catalog: DocumentCatalog) -> dict[str, str]:
        return {document.id: document.version for document in catalog.find(Equals("source_id", SOURCE))}

    def test_init(self, embedder, store, catalog):
        indexer = Indexer(embedder, store, catalog, workers=0)

        assert indexer.embedder is embedder
        assert indexer.store is store
        assert indexer.catalog is catalog
        assert indexer.workers == 1
        assert indexer.max_tokens == 200

    def test_first_sync_inserts_everything(self, embedder, store, catalog, reader):
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1"), ManifestEntry("/b", "v1")]
        indexer = self._indexer(embedder, store, catalog, reader, {"/a": _page(4), "/b": _page(1)})

        stats = indexer.sync(SITE)

        reader.fetch_manifest.assert_called_once_with(SITE)
        assert (stats.inserted, stats.updated, stats.failed) == (2, 0, 0)
        assert self._keys(store) == ["/a_0", "/a_1", "/b_0"]
        assert self._versions(catalog) == {"/a": "v1", "/b": "v1"}
        assert embedder.embed.call_count == 2

    def test_second_sync_is_noop(self, embedder, store, catalog, reader):
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1")]
        calls: list[str] = []
        indexer = self._indexer(embedder, store, catalog, reader, {"/a": _page(2)}, calls)

        indexer.sync(SITE)
        stats = indexer.sync(SITE)

        assert stats.unchanged == 1
        assert (stats.inserted, stats.updated, stats.deleted) == (0, 0, 0)
        assert calls == ["/a"]

    def test_modified_page_replaces_stale_chunks(self, embedder, store, catalog, reader):
        pages = {"/a": _page(6)}
        indexer = self._indexer(embedder, store, catalog, reader, pages)
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1")]
        indexer.sync(SITE)
        assert self._keys(store) == ["/a_0", "/a_1", "/a_2"]

        pages["/a"] = _page(1)
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v2")]
        stats = indexer.sync(SITE)

        assert stats.updated == 1
        assert self._keys(store) == ["/a_0"]
        assert self._versions(catalog) == {"/a": "v2"}

    def test_removed_page_is_deleted(self, embedder, store, catalog, reader):
        indexer = self._indexer(embedder, store, catalog, reader, {"/a": _page(1), "/b": _page(1)})
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1"), ManifestEntry("/b", "v1")]
        indexer.sync(SITE)

        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1")]
        stats = indexer.sync(SITE)

        assert stats.deleted == 1
        assert stats.unchanged == 1
        assert self._keys(store) == ["/a_0"]
        assert self._versions(catalog) == {"/a": "v1"}

    def test_failed_document_keeps_old_version(self, embedder, store, catalog, reader):
        pages: dict[str, object] = {"/a": _page(1), "/b": _page(1)}
        indexer = self._indexer(embedder, store, catalog, reader, pages)
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1"), ManifestEntry("/b", "v1")]
        indexer.sync(SITE)

        pages["/a"] = FetchFailed("503 from origin", document_id="/a")
        pages["/b"] = _page(2)
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v2"), ManifestEntry("/b", "v2")]
        stats = indexer.sync(SITE)

        assert stats.failed == 1
        assert stats.updated == 1
        assert "503 from origin" in stats.failures["/a"]
        assert self._versions(catalog) == {"/a": "v1", "/b": "v2"}
        assert self._keys(store) == ["/a_0", "/b_0"]

    def test_failed_new_document_not_catalogued(self, embedder, store, catalog, reader):
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1")]
        pages = {"/a": FetchFailed("timeout", document_id="/a")}
        indexer = self._indexer(embedder, store, catalog, reader, pages)

        stats = indexer.sync(SITE)

        assert stats.failed == 1
        assert self._versions(catalog) == {}
        assert self._keys(store) == []

    def test_embedding_count_mismatch_writes_nothing(self, store, catalog, reader):
        embedder = Mock()
        embedder.embed.return_value = np.ones((1, 3), dtype="float32")
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1")]
        indexer = self._indexer(embedder, store, catalog, reader, {"/a": _page(6)})

        stats = indexer.sync(SITE)

        assert stats.failed == 1
        assert stats.failures["/a"].startswith("EmbeddingCountMismatch")
        assert self._keys(store) == []
        assert self._versions(catalog) == {}

    @pytest.mark.parametrize("error", [ManifestUnavailable("down"), ManifestMalformed("garbage")])
    def test_manifest_error_aborts_pass(self, embedder, store, catalog, reader, error):
        indexer = self._indexer(embedder, store, catalog, reader, {"/a": _page(1)})
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1")]
        indexer.sync(SITE)

        reader.fetch_manifest.side_effect = error
        with pytest.raises(type(error)):
            indexer.sync(SITE)

        assert self._versions(catalog) == {"/a": "v1"}
        assert self._keys(store) == ["/a_0"]

    def test_cancelled_pass_leaves_documents_untouched(self, embedder, store, catalog, reader):
        reader.fetch_manifest.return_value = [ManifestEntry(f"/p{i}", "v1") for i in range(5)]
        pages = {f"/p{i}": _page(1) for i in range(5)}
        indexer = self._indexer(embedder, store, catalog, reader, pages)
        cancel = threading.Event()
        cancel.set()

        stats = indexer.sync(SITE, cancel_event=cancel)

        assert stats.cancelled == 5
        assert stats.inserted == 0
        assert self._versions(catalog) == {}
        assert self._keys(store) == []

    def test_cancelled_pass_keeps_deleted_pages(self, embedder, store, catalog, reader):
        indexer = self._indexer(embedder, store, catalog, reader, {"/a": _page(1), "/gone": _page(1)})
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1"), ManifestEntry("/gone", "v1")]
        indexer.sync(SITE)

        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v2")]
        cancel = threading.Event()
        cancel.set()
        stats = indexer.sync(SITE, cancel_event=cancel)

        assert stats.deleted == 0
        assert stats.cancelled == 2
        assert self._versions(catalog) == {"/a": "v1", "/gone": "v1"}
        assert self._keys(store) == ["/a_0", "/gone_0"]

    def test_write_failure_isolated_to_one_page(self, store, catalog, reader):
        embedder = Mock()

        def embed(texts):
            # "/bad" chunks come back with the wrong dimension
            dimension = 2 if any("Broken" in text for text in texts) else 3
            return np.ones((len(texts), dimension), dtype="float32")

        embedder.embed.side_effect = embed
        pages = {"/bad": "Broken page text.", "/good": _page(1)}
        reader.fetch_manifest.return_value = [ManifestEntry("/bad", "v1"), ManifestEntry("/good", "v1")]
        indexer = self._indexer(embedder, store, catalog, reader, pages, workers=1)

        stats = indexer.sync(SITE)

        assert stats.inserted == 1
        assert stats.failed == 1
        assert stats.failures["/bad"].startswith("ValueError")
        assert self._versions(catalog) == {"/good": "v1"}
        assert self._keys(store) == ["/good_0"]

    def test_catalog_write_failure_isolated(self, embedder, store, reader, db_path):
        catalog = Mock(wraps=DocumentCatalog(db_path))
        catalog.apply_update.side_effect = [sqlite3.OperationalError("database is locked"), "inserted"]
        reader.fetch_manifest.return_value = [ManifestEntry("/a", "v1"), ManifestEntry("/b", "v1")]
        indexer = self._indexer(embedder, store, catalog, reader, {"/a": _page(1), "/b": _page(1)}, workers=1)

        stats = indexer.sync(SITE)

        assert stats.failed == 1
        assert stats.inserted == 1
        assert len(stats.failures) == 1
        catalog.close()

    def test_sequential_worker(self, embedder, store, catalog, reader):
        reader.fetch_manifest.return_value = [ManifestEntry(f"/p{i}", "v1") for i in range(3)]
        pages = {f"/p{i}": _page(1) for i in range(3)}
        indexer = self._indexer(embedder, store, catalog, reader, pages, workers=1)

        stats = indexer.sync(SITE)

        assert stats.inserted == 3
        assert self._keys(store) == ["/p0_0", "/p1_0", "/p2_0"]
