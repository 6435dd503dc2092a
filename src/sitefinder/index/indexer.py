"""Incremental sync pipeline."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from sitefinder.embedding.encoder import EmbeddingModel
from sitefinder.index.catalog import DocumentCatalog
from sitefinder.index.diff import DocumentDiffEngine
from sitefinder.index.records import FetchAndExtract, build_records
from sitefinder.index.storage import DEFAULT_COLLECTION, SQLiteVectorStore
from sitefinder.ingestion.html_loader import PageLoader
from sitefinder.ingestion.manifest import ManifestReader
from sitefinder.models import DocumentUpdate, IngestedDocument, SearchRecord
from sitefinder.utils.text import DEFAULT_MAX_TOKENS

LOGGER = logging.getLogger(__name__)

SOURCE_KIND = "web"
DEFAULT_WORKERS = 4


def source_id_for(source_url: str) -> str:
    """Catalog partition key for a source; stable across runs."""
    return f"{SOURCE_KIND}:{source_url}"


def _is_cancelled(cancel_event: threading.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


@dataclass(slots=True)
class SyncStats:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: int = 0
    cancelled: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    def increment(self, status: str) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "deleted":
            self.deleted += 1
        else:
            raise ValueError(f"Unknown sync status: {status!r}")

    def record_failure(self, document_id: str, error: Exception) -> None:
        self.failed += 1
        self.failures[document_id] = f"{type(error).__name__}: {error}"


class Indexer:
    """Coordinates a sync pass: sitemap, diff, page processing, persistence.

    Pages are fetched and embedded on a small thread pool. Results are written
    from the calling thread one document at a time, records first and catalog
    version last, so a document that fails anywhere keeps its old version and
    is picked up again on the next pass.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        catalog: DocumentCatalog,
        *,
        manifest_reader: ManifestReader | None = None,
        loader_factory: Callable[[str], FetchAndExtract] | None = None,
        collection: str = DEFAULT_COLLECTION,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        workers: int = DEFAULT_WORKERS,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.catalog = catalog
        self.manifest_reader = manifest_reader or ManifestReader()
        self.loader_factory = loader_factory or PageLoader
        self.collection = collection
        self.max_tokens = max_tokens
        self.workers = max(1, workers)

    def sync(self, source_url: str, *, cancel_event: threading.Event | None = None) -> SyncStats:
        """Bring the index for ``source_url`` in line with its sitemap.

        Manifest errors propagate before anything is modified.
        """
        source_id = source_id_for(source_url)
        entries = self.manifest_reader.fetch_manifest(source_url)
        diff = DocumentDiffEngine(self.catalog).diff(source_id, entries)

        stats = SyncStats(unchanged=len(diff.unchanged))
        for position, document in enumerate(diff.deleted):
            if _is_cancelled(cancel_event):
                self._cancel(stats, len(diff.deleted) - position + len(diff.changed))
                return stats
            self._remove(document)
            stats.increment("deleted")

        if diff.changed and _is_cancelled(cancel_event):
            self._cancel(stats, len(diff.changed))
        elif diff.changed:
            self._index_changed(diff.changed, self.loader_factory(source_url), stats, cancel_event)

        LOGGER.info(
            "Sync of %s done: inserted=%d updated=%d deleted=%d unchanged=%d failed=%d cancelled=%d",
            source_url,
            stats.inserted,
            stats.updated,
            stats.deleted,
            stats.unchanged,
            stats.failed,
            stats.cancelled,
        )
        return stats

    def _index_changed(
        self,
        changed: List[DocumentUpdate],
        fetch: FetchAndExtract,
        stats: SyncStats,
        cancel_event: threading.Event | None,
    ) -> None:
        with ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="sitefinder-sync"
        ) as executor:
            pending: Dict[Future[List[SearchRecord]], DocumentUpdate] = {
                executor.submit(
                    build_records, self.embedder.embed, fetch, update.id, max_tokens=self.max_tokens
                ): update
                for update in changed
            }

            for future in as_completed(list(pending)):
                update = pending.pop(future)
                if _is_cancelled(cancel_event):
                    for remaining in pending:
                        remaining.cancel()
                    self._cancel(stats, 1 + len(pending))
                    break

                try:
                    self._write(update, future.result(), stats)
                except Exception as exc:
                    LOGGER.error("Failed to process %s: %s", update.id, exc)
                    stats.record_failure(update.id, exc)

    def _write(self, update: DocumentUpdate, records: List[SearchRecord], stats: SyncStats) -> None:
        # Catalog version goes last: a failure before it leaves the old version for a retry
        removed = self.store.replace_document(self.collection, update.id, records)
        status = self.catalog.apply_update(update)
        LOGGER.info(
            "Indexed %s (%s): %d records written, %d replaced",
            update.id,
            status,
            len(records),
            removed,
        )
        stats.increment(status)

    def _cancel(self, stats: SyncStats, skipped: int) -> None:
        stats.cancelled += skipped
        LOGGER.warning("Sync cancelled; %d documents left untouched", stats.cancelled)

    def _remove(self, document: IngestedDocument) -> None:
        removed = self.store.delete_document(self.collection, document.id)
        self.catalog.delete(document)
        LOGGER.info("Removed %s (%d records)", document.id, removed)
