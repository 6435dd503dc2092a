"""Sitemap-versus-catalog diffing."""

from __future__ import annotations

import logging
from typing import Sequence

from sitefinder.index.catalog import DocumentCatalog
from sitefinder.index.filters import Equals, NotIn
from sitefinder.models import DiffResult, DocumentUpdate, ManifestEntry

LOGGER = logging.getLogger(__name__)


class DocumentDiffEngine:
    """Works out which documents of one source need indexing or removal.

    Versions are compared as exact strings. Any change in how a site formats
    ``lastmod`` (offset, precision) therefore re-indexes every page once.
    """

    def __init__(self, catalog: DocumentCatalog) -> None:
        self.catalog = catalog

    def diff(self, source_id: str, entries: Sequence[ManifestEntry]) -> DiffResult:
        result = DiffResult()
        seen: set[str] = set()

        for entry in entries:
            if entry.location_id in seen:
                LOGGER.warning("Duplicate sitemap entry ignored: %s", entry.location_id)
                continue
            seen.add(entry.location_id)

            existing = self.catalog.find_one(
                Equals("source_id", source_id), Equals("id", entry.location_id)
            )
            if existing is None:
                result.changed.append(
                    DocumentUpdate(source_id=source_id, id=entry.location_id, version=entry.version_token)
                )
            elif existing.version != entry.version_token:
                result.changed.append(
                    DocumentUpdate(
                        source_id=source_id,
                        id=entry.location_id,
                        version=entry.version_token,
                        previous_version=existing.version,
                    )
                )
            else:
                result.unchanged.append(entry.location_id)

        result.deleted = self.catalog.find(Equals("source_id", source_id), NotIn.of("id", seen))

        LOGGER.info(
            "Diff for %s: %d changed, %d unchanged, %d deleted",
            source_id,
            len(result.changed),
            len(result.unchanged),
            len(result.deleted),
        )
        return result
