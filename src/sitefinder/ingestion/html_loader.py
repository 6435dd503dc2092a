"""Page loading and plain-text extraction.

Uses httpx to download pages and BeautifulSoup to strip markup.
"""

from __future__ import annotations

import logging
from typing import Iterator
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from sitefinder.errors import ExtractionFailed, FetchFailed
from sitefinder.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)

# Elements whose text never belongs to the readable page
_NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]

_TEXT_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")


def iter_text_parts(html: str) -> Iterator[str]:
    """Yield the visible text of an HTML document line by line."""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(_NON_CONTENT_TAGS):
        element.decompose()
    yield from soup.get_text("\n").splitlines()


def extract_text(html: str) -> str:
    """Convert an HTML document to whitespace-normalised plain text."""
    return normalize_whitespace(iter_text_parts(html))


class PageLoader:
    """Fetch-and-extract collaborator: document id in, plain text out.

    Document ids are sitemap ``<loc>`` values, resolved against the source URL
    so that both absolute and site-relative locations work.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.Client | None = None,
        *,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url
        self.client = client
        self.timeout = timeout

    def __call__(self, document_id: str) -> str:
        response = self._fetch(document_id)

        content_type = response.headers.get("content-type", "text/html").split(";")[0].strip()
        if content_type and content_type.lower() not in _TEXT_CONTENT_TYPES:
            raise ExtractionFailed(
                f"Unsupported content type {content_type!r}", document_id=document_id
            )

        try:
            if content_type.lower() == "text/plain":
                return normalize_whitespace(response.text.splitlines())
            return extract_text(response.text)
        except Exception as exc:
            raise ExtractionFailed(
                f"Failed to extract text from {document_id}: {exc}", document_id=document_id
            ) from exc

    def _fetch(self, document_id: str) -> httpx.Response:
        url = urljoin(self.base_url, document_id)
        LOGGER.debug("Fetching page %s", url)
        try:
            if self.client is not None:
                response = self.client.get(url, timeout=self.timeout)
            else:
                response = httpx.get(url, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchFailed(f"Unable to fetch {url}: {exc}", document_id=document_id) from exc
        return response
