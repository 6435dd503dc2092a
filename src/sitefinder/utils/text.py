"""Text helpers including paragraph-aware chunking."""

from __future__ import annotations

import re
from typing import Iterable, List

from sitefinder.errors import InvalidArgument
from sitefinder.models import TextChunk

DEFAULT_MAX_TOKENS = 200

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?;:])\s+")


def count_tokens(text: str) -> int:
    """Whitespace-delimited token count used for every chunk size check."""
    return len(text.split())


def _split_line(line: str, max_tokens: int) -> List[str]:
    """Break an over-long line at sentence boundaries, then at word runs."""
    if count_tokens(line) <= max_tokens:
        return [line]

    pieces: List[str] = []
    for sentence in _SENTENCE_BOUNDARY.split(line):
        words = sentence.split()
        if not words:
            continue
        if len(words) <= max_tokens:
            pieces.append(sentence.strip())
            continue
        for start in range(0, len(words), max_tokens):
            pieces.append(" ".join(words[start : start + max_tokens]))
    return pieces


def chunk_paragraphs(text: str, *, max_tokens: int = DEFAULT_MAX_TOKENS) -> List[TextChunk]:
    """Split plain text into ordered chunks of at most ``max_tokens`` tokens.

    Lines are kept whole where they fit. Longer lines fall back to sentence
    boundaries and, for run-on sentences, fixed word runs. Pieces are packed
    greedily, so text that already fits comes back as a single chunk.
    """
    if max_tokens <= 0:
        raise InvalidArgument("max_tokens must be > 0")

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    chunks: List[str] = []
    current = ""
    current_tokens = 0
    for line in lines:
        for position, piece in enumerate(_split_line(line, max_tokens)):
            tokens = count_tokens(piece)
            if current and current_tokens + tokens > max_tokens:
                chunks.append(current)
                current = ""
                current_tokens = 0
            if current:
                separator = "\n" if position == 0 else " "
                current = f"{current}{separator}{piece}"
            else:
                current = piece
            current_tokens += tokens

    if current:
        chunks.append(current)

    return [TextChunk(index_on_page=index, text=chunk) for index, chunk in enumerate(chunks)]


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
