"""Exception hierarchy for sync passes and search."""

from __future__ import annotations


class SiteFinderError(Exception):
    """Base class for every error raised by SiteFinder."""


class ManifestUnavailable(SiteFinderError):
    """The sitemap could not be fetched. Aborts the whole sync pass."""


class ManifestMalformed(SiteFinderError):
    """The sitemap could not be parsed into entries. Aborts the whole sync pass."""


class DocumentError(SiteFinderError):
    """Failure scoped to a single document; siblings keep going."""

    def __init__(self, message: str, *, document_id: str | None = None) -> None:
        super().__init__(message)
        self.document_id = document_id


class FetchFailed(DocumentError):
    pass


class ExtractionFailed(DocumentError):
    pass


class EmbeddingFailed(DocumentError):
    pass


class EmbeddingCountMismatch(DocumentError):
    def __init__(self, expected: int, actual: int, *, document_id: str | None = None) -> None:
        super().__init__(
            f"Embedding service returned {actual} vectors for {expected} chunks",
            document_id=document_id,
        )
        self.expected = expected
        self.actual = actual


class InvalidArgument(SiteFinderError, ValueError):
    """Caller misuse; raised before any side effect."""
