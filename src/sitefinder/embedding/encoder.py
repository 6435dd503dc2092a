"""Embedding model management."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from sitefinder.errors import EmbeddingFailed

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for query and chunk embeddings.

    Output rows always line up with the input texts; any encoder failure is
    surfaced as :class:`EmbeddingFailed`.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()

        try:
            self._model = self._load_model()
        except Exception as e:
            if self.config.backend == "torch":
                raise
            logger.warning(
                f"Failed to load model with backend '{self.config.backend}': {e}. "
                "Falling back to PyTorch."
            )
            self.config.backend = "torch"
            self._model = self._load_model()

        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "Loaded %s | Backend: %s | Dimension: %d",
            self.config.model_name,
            self.config.backend,
            self.dimension,
        )

    def _load_model(self) -> SentenceTransformer:
        return SentenceTransformer(
            self.config.model_name,
            backend=self.config.backend,
            device=self.config.device,
        )

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts, one row per text."""
        sentences = list(texts)
        if not sentences:
            return np.zeros((0, self.dimension), dtype="float32")
        try:
            embeddings = self._model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise EmbeddingFailed(f"Embedding {len(sentences)} texts failed: {exc}") from exc
        return embeddings.astype("float32", copy=False)

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return self.embed([text])[0]
