"""Core SiteFinder data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

import numpy as np


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """One ``<url>`` of a sitemap: where the page lives and when it last changed."""

    location_id: str
    version_token: str


@dataclass(slots=True)
class IngestedDocument:
    """Catalog row tracking the version of a page that was last indexed."""

    id: str
    source_id: str
    version: str


@dataclass(frozen=True, slots=True)
class DocumentUpdate:
    """Intent to (re)index a document at a new version.

    ``previous_version`` is ``None`` when the document is not in the catalog yet.
    """

    source_id: str
    id: str
    version: str
    previous_version: str | None = None

    @property
    def is_new(self) -> bool:
        return self.previous_version is None


@dataclass(slots=True)
class DiffResult:
    changed: List[DocumentUpdate] = field(default_factory=list)
    deleted: List[IngestedDocument] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TextChunk:
    index_on_page: int
    text: str


@dataclass(slots=True)
class SearchRecord:
    """Chunk of page text paired with its embedding."""

    key: str
    url: str
    text: str
    vector: np.ndarray
