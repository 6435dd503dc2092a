"""Semantic search interface."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import islice
from typing import List

from sitefinder.embedding.encoder import EmbeddingModel
from sitefinder.errors import EmbeddingFailed, InvalidArgument, SiteFinderError
from sitefinder.index.filters import Equals
from sitefinder.index.storage import DEFAULT_COLLECTION, SQLiteVectorStore


@dataclass(slots=True)
class SearchResult:
    key: str
    url: str
    text: str
    score: float


class Searcher:
    """High-level API to query the vector store.

    Hits are returned as :class:`SearchResult`: the stored record's key, url
    and text plus its similarity score. The embedding vector is left out so
    results stay JSON-serializable for the CLI and HTTP API; callers needing
    it can query :class:`SQLiteVectorStore.search` directly.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        *,
        collection: str = DEFAULT_COLLECTION,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.collection = collection

    def search(
        self, query: str, *, url_filter: str | None = None, max_results: int = 5
    ) -> List[SearchResult]:
        """Return up to ``max_results`` records most similar to ``query``.

        An empty ``url_filter`` means no filter.
        """
        if max_results <= 0:
            raise InvalidArgument("max_results must be > 0")

        try:
            embedding = self.embedder.embed_query(query)
        except SiteFinderError:
            raise
        except Exception as exc:
            raise EmbeddingFailed(f"Embedding query failed: {exc}") from exc

        predicate = Equals("url", url_filter) if url_filter else None
        hits = self.store.search(self.collection, embedding, top=max_results, filter=predicate)
        return [
            SearchResult(key=record.key, url=record.url, text=record.text, score=score)
            for record, score in islice(hits, max_results)
        ]
