"""Command line interface for SiteFinder."""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from sitefinder.config import AppConfig
from sitefinder.embedding.encoder import EmbeddingConfig, EmbeddingModel
from sitefinder.errors import InvalidArgument, ManifestMalformed, ManifestUnavailable
from sitefinder.index.catalog import DocumentCatalog
from sitefinder.index.filters import Equals
from sitefinder.index.indexer import Indexer, source_id_for
from sitefinder.index.search import Searcher
from sitefinder.index.storage import SQLiteVectorStore
from sitefinder.ingestion.html_loader import PageLoader
from sitefinder.ingestion.manifest import ManifestReader
from sitefinder.web.app import app as web_app


console = Console()
app = typer.Typer(help="SiteFinder - incremental semantic search over a website's sitemap")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


@app.command()
def sync(
    source_url: str = typer.Argument(..., help="Base URL of the site; its sitemap.xml is read."),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    max_tokens: int = typer.Option(AppConfig().max_chunk_tokens, help="Maximum tokens per chunk"),
    workers: int = typer.Option(AppConfig().workers, help="Pages processed in parallel"),
    timeout: float = typer.Option(AppConfig().request_timeout, help="HTTP timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index new and modified pages, and drop pages gone from the sitemap."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        model_name=model,
        max_chunk_tokens=max_tokens,
        workers=workers,
        request_timeout=timeout,
    )

    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

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

    console.print(f"Syncing [bold]{source_url}[/bold] into [bold]{resolved_db}[/bold]...")
    try:
        stats = indexer.sync(source_url)
    except (ManifestUnavailable, ManifestMalformed) as exc:
        console.print(f"[red]Sitemap error: {exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.close()
        catalog.close()

    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, deleted: {stats.deleted}, "
        f"unchanged: {stats.unchanged}, failed: {stats.failed}"
    )
    if stats.failures:
        table = Table(show_header=True, header_style="bold red")
        table.add_column("Document")
        table.add_column("Error")
        for document_id, error in stats.failures.items():
            table.add_row(document_id, error)
        console.print(table)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    url: Optional[str] = typer.Option(None, "--url", help="Only search chunks of this page"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    top_k: int = typer.Option(5, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a semantic search."""
    _setup_logging(verbose)
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path, model_name=model)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    if top_k <= 0:
        raise typer.BadParameter("--top-k must be greater than zero")

    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.model_name))
    store = SQLiteVectorStore(resolved_db, dimension=embedder.dimension)
    searcher = Searcher(embedder, store, collection=config.collection)

    try:
        results = searcher.search(query, url_filter=url, max_results=top_k)
    except InvalidArgument as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Page")
    table.add_column("Key")
    table.add_column("Snippet")

    for result in results:
        snippet = result.text.replace("\n", " ")
        table.add_row(f"{result.score:.4f}", result.url, result.key, snippet[:180])

    console.print(table)


@app.command()
def documents(
    source: Optional[str] = typer.Option(None, "--source", help="Only list pages of this site"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List pages in the catalog with the version last indexed."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing indexed yet.[/yellow]")
        return

    catalog = DocumentCatalog(resolved_db)
    try:
        predicates = [Equals("source_id", source_id_for(source))] if source else []
        rows = catalog.find(*predicates)
    finally:
        catalog.close()

    if not rows:
        console.print("[yellow]No documents indexed.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source")
    table.add_column("Document")
    table.add_column("Version")
    for row in rows:
        table.add_row(row.source_id, row.id, row.version)
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - optional extra
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, searches might fail.[/yellow]")

    web_app.state.db_path = resolved_db
    console.print(f"Starting API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
