"""FastAPI application exposing sync and search over HTTP."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from functools import partial
from pathlib import Path
from typing import Any, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from sitefinder.config import AppConfig
from sitefinder.embedding.encoder import EmbeddingConfig, EmbeddingModel
from sitefinder.errors import InvalidArgument, ManifestMalformed, ManifestUnavailable
from sitefinder.index.catalog import DocumentCatalog
from sitefinder.index.filters import Equals
from sitefinder.index.indexer import Indexer, source_id_for
from sitefinder.index.search import Searcher, SearchResult
from sitefinder.index.storage import SQLiteVectorStore
from sitefinder.ingestion.html_loader import PageLoader
from sitefinder.ingestion.manifest import ManifestReader

LOGGER = logging.getLogger(__name__)

MAX_RESULTS_LIMIT = 50

app = FastAPI(title="SiteFinder API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchPayload(BaseModel):
    query: str
    url: str | None = None
    db: Path | None = None
    max_results: int = 5


class SyncPayload(BaseModel):
    source_url: str
    db: str | None = None
    model: str | None = None
    max_tokens: int | None = None
    workers: int | None = None


def _resolve_db_path(db: Path | None) -> Path:
    if db is None:
        db = getattr(app.state, "db_path", None)
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    return config.resolve_db_path(Path.cwd())


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.post("/search")
async def search_documents(payload: SearchPayload) -> dict[str, List[SearchResult]]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    resolved_db = _resolve_db_path(payload.db)
    if not resolved_db.exists():
        raise HTTPException(
            status_code=404,
            detail=f"Database not found at {resolved_db}. Run a sync first.",
        )

    config = AppConfig()
    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
    store = SQLiteVectorStore(resolved_db, dimension=embedder.dimension)
    searcher = Searcher(embedder, store, collection=config.collection)
    try:
        results = searcher.search(
            query,
            url_filter=payload.url,
            max_results=min(payload.max_results, MAX_RESULTS_LIMIT),
        )
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        store.close()
    return {"results": results}


def _run_sync_job(source_url: str, config: AppConfig, resolved_db: Path) -> dict[str, Any]:
    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
    store = SQLiteVectorStore(resolved_db, dimension=embedder.dimension)
    catalog = DocumentCatalog(resolved_db)
    indexer = Indexer(
        embedder,
        store,
        catalog,
        manifest_reader=ManifestReader(
            timeout=config.request_timeout, manifest_path=config.manifest_path
        ),
        loader_factory=partial(PageLoader, timeout=config.request_timeout),
        collection=config.collection,
        max_tokens=config.max_chunk_tokens,
        workers=config.workers,
    )
    try:
        stats = indexer.sync(source_url)
    finally:
        store.close()
        catalog.close()
    return asdict(stats)


@app.post("/sync")
async def sync_source(payload: SyncPayload) -> dict[str, Any]:
    source_url = payload.source_url.strip()
    if not source_url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="source_url must be an http(s) URL")

    defaults = AppConfig()
    config = AppConfig(
        db_path=Path(payload.db) if payload.db is not None else _resolve_db_path(None),
        model_name=payload.model or defaults.model_name,
        max_chunk_tokens=payload.max_tokens or defaults.max_chunk_tokens,
        workers=payload.workers or defaults.workers,
    )
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    try:
        stats = await asyncio.to_thread(_run_sync_job, source_url, config, resolved_db)
    except (ManifestUnavailable, ManifestMalformed) as exc:
        LOGGER.error("Sync of %s aborted: %s", source_url, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return {"status": "ok", "db": str(resolved_db), "source_id": source_id_for(source_url), "stats": stats}


@app.get("/documents")
async def list_documents(source: str | None = None, db: Path | None = None) -> dict[str, Any]:
    """List catalogued pages, optionally for one site."""
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {"documents": [], "count": 0}

    catalog = DocumentCatalog(resolved_db)
    try:
        predicates = [Equals("source_id", source_id_for(source))] if source else []
        rows = catalog.find(*predicates)
    finally:
        catalog.close()

    return {"documents": [asdict(row) for row in rows], "count": len(rows)}
