"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from sitefinder.embedding.encoder import DEFAULT_MODEL
from sitefinder.index.indexer import DEFAULT_WORKERS
from sitefinder.index.storage import DEFAULT_COLLECTION
from sitefinder.ingestion.manifest import DEFAULT_MANIFEST_PATH
from sitefinder.utils.text import DEFAULT_MAX_TOKENS


def _get_default_db_path() -> Path:
    """Prefer a local data/ database when running from a checkout."""
    local_db = Path("data/sitefinder.db")
    if local_db.exists():
        return local_db
    return Path.home() / "Documents" / "SiteFinder" / "sitefinder.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL
    max_chunk_tokens: int = DEFAULT_MAX_TOKENS
    workers: int = DEFAULT_WORKERS
    request_timeout: float = 30.0
    collection: str = DEFAULT_COLLECTION
    manifest_path: str = DEFAULT_MANIFEST_PATH

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
