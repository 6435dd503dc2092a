"""Turning one page into searchable records."""

from __future__ import annotations

import logging
from typing import Callable, List, Sequence

import numpy as np

from sitefinder.errors import EmbeddingCountMismatch, EmbeddingFailed, SiteFinderError
from sitefinder.models import SearchRecord
from sitefinder.utils.text import DEFAULT_MAX_TOKENS, chunk_paragraphs

LOGGER = logging.getLogger(__name__)

EmbedTexts = Callable[[List[str]], Sequence[np.ndarray]]
FetchAndExtract = Callable[[str], str]


def record_key(document_id: str, index_on_page: int) -> str:
    return f"{document_id}_{index_on_page}"


def build_records(
    embed_texts: EmbedTexts,
    fetch_and_extract: FetchAndExtract,
    document_id: str,
    *,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> List[SearchRecord]:
    """Fetch, chunk and embed one document.

    All chunk texts go to the embedder in a single call, and the returned
    vectors are paired with chunks by position. Fetch and extraction errors
    propagate unchanged. Nothing is written anywhere.
    """
    text = fetch_and_extract(document_id)
    chunks = chunk_paragraphs(text, max_tokens=max_tokens)
    if not chunks:
        LOGGER.warning("No text extracted from %s", document_id)
        return []

    try:
        vectors = embed_texts([chunk.text for chunk in chunks])
    except SiteFinderError as exc:
        if isinstance(exc, EmbeddingFailed) and exc.document_id is None:
            exc.document_id = document_id
        raise
    except Exception as exc:
        raise EmbeddingFailed(
            f"Embedding {document_id} failed: {exc}", document_id=document_id
        ) from exc

    if len(vectors) != len(chunks):
        raise EmbeddingCountMismatch(len(chunks), len(vectors), document_id=document_id)

    return [
        SearchRecord(
            key=record_key(document_id, chunk.index_on_page),
            url=document_id,
            text=chunk.text,
            vector=np.asarray(vector, dtype="float32"),
        )
        for chunk, vector in zip(chunks, vectors)
    ]
