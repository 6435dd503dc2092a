"""Sitemap loading.

Turns a site's ``sitemap.xml`` into an ordered list of
:class:`~sitefinder.models.ManifestEntry`. Either the whole manifest parses or
the sync pass is aborted; a partially understood sitemap is never returned.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import List
from urllib.parse import urljoin

import httpx

from sitefinder.errors import ManifestMalformed, ManifestUnavailable
from sitefinder.models import ManifestEntry

LOGGER = logging.getLogger(__name__)

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
DEFAULT_MANIFEST_PATH = "sitemap.xml"


def version_token(lastmod: str) -> str:
    """Serialize a ``lastmod`` timestamp to a sortable ISO-8601 string.

    Timestamps without an offset are taken as UTC.
    """
    value = lastmod.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ManifestMalformed(f"Unparseable lastmod: {lastmod!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat(timespec="microseconds")


def parse_manifest(content: bytes | str) -> List[ManifestEntry]:
    """Parse sitemap XML into manifest entries, in document order."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ManifestMalformed(f"Sitemap is not well-formed XML: {exc}") from exc

    if root.tag != f"{{{SITEMAP_NS}}}urlset":
        raise ManifestMalformed(f"Unexpected sitemap root element: {root.tag}")

    entries: List[ManifestEntry] = []
    for position, element in enumerate(root.findall(f"{{{SITEMAP_NS}}}url")):
        location = (element.findtext(f"{{{SITEMAP_NS}}}loc") or "").strip()
        if not location:
            raise ManifestMalformed(f"Sitemap entry {position} has no <loc>")
        lastmod = element.findtext(f"{{{SITEMAP_NS}}}lastmod")
        if lastmod is None or not lastmod.strip():
            raise ManifestMalformed(f"Sitemap entry {location} has no <lastmod>")
        entries.append(ManifestEntry(location_id=location, version_token=version_token(lastmod)))
    return entries


class ManifestReader:
    """Fetches and parses a source's sitemap. No retries."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        timeout: float = 30.0,
        manifest_path: str = DEFAULT_MANIFEST_PATH,
    ) -> None:
        self.client = client
        self.timeout = timeout
        self.manifest_path = manifest_path

    def manifest_url(self, source_url: str) -> str:
        return urljoin(source_url, self.manifest_path)

    def fetch_manifest(self, source_url: str) -> List[ManifestEntry]:
        url = self.manifest_url(source_url)
        LOGGER.info("Fetching sitemap %s", url)
        if self.client is not None:
            content = self._download(self.client, url)
        else:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                content = self._download(client, url)

        entries = parse_manifest(content)
        LOGGER.info("Sitemap %s lists %d pages", url, len(entries))
        return entries

    def _download(self, client: httpx.Client, url: str) -> bytes:
        try:
            response = client.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ManifestUnavailable(f"Unable to fetch sitemap {url}: {exc}") from exc
        return response.content
