"""kbindex ingest: index sources now, or enqueue them with --queue.

Source dispatch (``--kind auto``):
  *.pdf (path or URL)     -> document  (PdfExtractor)
  http:// / https://      -> url       (fetch + extract)
  other local file        -> text      (file contents)
Explicit kinds: url, page, document, api, catalog, sitemap, text. For ``catalog``
each SOURCE is an item id, or ``all`` for every item of the configured catalog.
For ``sitemap`` each SOURCE is a sitemap URL, or ``all`` to discover URLs from
every configured origin (pages, catalog, sitemaps, manual URLs); discovered
URLs are always queued, never indexed inline.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from kbindex.cli.common import console, load_cfg, open_pipeline, require_api_key
from kbindex.cli.errors import err_fetch, err_indexing_failed, err_no_catalog, err_ssrf_blocked
from kbindex.db.models import SourceType
from kbindex.errors import FetchError, IndexingError, KbindexError, SsrfError
from kbindex.indexer import IndexResult
from kbindex.ingest.pdf import is_url
from kbindex.pipeline import Pipeline
from kbindex.queue import (
    CrawlUrlPayload,
    JobType,
    ProcessApiPayload,
    ProcessCatalogItemPayload,
    ProcessContentPayload,
    ProcessDocumentPayload,
)

_KINDS = ("auto", "url", "page", "document", "api", "catalog", "sitemap", "text")


def ingest_cmd(
    sources: Annotated[
        list[str],
        typer.Argument(help="URLs, file paths, or catalog item ids."),
    ],
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help=f"Source kind: {', '.join(_KINDS)}."),
    ] = "auto",
    queue: Annotated[
        bool,
        typer.Option("--queue", help="Enqueue ingestion jobs instead of indexing now."),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", help="Re-index sources that are already indexed."),
    ] = False,
    api_options: Annotated[
        str | None,
        typer.Option("--api-options", help="JSON object of API endpoint options."),
    ] = None,
    priority: Annotated[
        int | None,
        typer.Option("--priority", help="Job priority for --queue (lower runs first)."),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", help="With --kind sitemap: queue at most N URLs (0 = all)."),
    ] = 0,
    offset: Annotated[
        int,
        typer.Option("--offset", help="With --kind sitemap: skip this many discovered URLs."),
    ] = 0,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """Ingest one or more sources into the knowledge base."""
    if kind not in _KINDS:
        console.print(f"[red]Error:[/] Unknown --kind '{kind}'. Use one of: {', '.join(_KINDS)}.")
        raise typer.Exit(1)

    options: dict[str, Any] = {}
    if api_options:
        try:
            options = json.loads(api_options)
        except json.JSONDecodeError as exc:
            console.print(f"[red]Error:[/] --api-options is not valid JSON: {exc}")
            raise typer.Exit(1)
        if not isinstance(options, dict):
            console.print("[red]Error:[/] --api-options must be a JSON object.")
            raise typer.Exit(1)

    if kind == "sitemap":
        queue = True

    cfg = load_cfg()
    if not queue:
        require_api_key(cfg)
    pipeline = open_pipeline(db, cfg)

    failures = 0
    try:
        for source, source_kind in _expand(sources, kind, pipeline, limit, offset):
            console.print(f"\n[bold]→ {source}[/] [dim]({source_kind})[/]")
            try:
                if queue:
                    job_id = _enqueue(pipeline, source, source_kind, force, options, priority)
                    console.print(f"  [green]✓[/] queued as job {job_id}")
                else:
                    _report(_index(pipeline, source, source_kind, force, options))
            except SsrfError:
                console.print(err_ssrf_blocked(source))
                failures += 1
            except FetchError as exc:
                console.print(err_fetch(source, str(exc)))
                failures += 1
            except IndexingError as exc:
                console.print(err_indexing_failed(source, exc.errors))
                failures += 1
            except (KbindexError, ValueError) as exc:
                console.print(f"  [red]✗ Error:[/] {exc}")
                failures += 1
    finally:
        pipeline.close()

    if failures:
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Dispatch
# ------------------------------------------------------------------


def _detect_kind(source: str) -> str:
    if source.lower().split("?")[0].endswith(".pdf"):
        return "document"
    if is_url(source):
        return "url"
    return "text"


def _expand(
    sources: list[str], kind: str, pipeline: Pipeline, limit: int = 0, offset: int = 0
) -> list[tuple[str, str]]:
    """Pair each source with its kind, expanding ``all`` and sitemaps."""
    if kind == "sitemap":
        return _discover(sources, pipeline, limit, offset)
    if kind == "auto":
        return [(source, _detect_kind(source)) for source in sources]
    if kind != "catalog" or "all" not in sources:
        return [(source, kind) for source in sources]
    catalog = pipeline.catalog
    if catalog is None:
        console.print(err_no_catalog())
        raise typer.Exit(1)
    return [(str(item.id), kind) for item in catalog.list_items()]


def _discover(
    sources: list[str], pipeline: Pipeline, limit: int, offset: int
) -> list[tuple[str, str]]:
    if limit < 0 or offset < 0:
        console.print("[red]Error:[/] --limit and --offset must be >= 0.")
        raise typer.Exit(1)
    if "all" in sources:
        found = pipeline.discovery.discover_urls(limit=limit, offset=offset)
    else:
        found = pipeline.discovery.discover_urls(
            include_pages=False,
            include_catalog=False,
            include_manual=False,
            sitemap_urls=sources,
            limit=limit,
            offset=offset,
        )
    console.print(f"Discovered [bold]{len(found)}[/] URL(s)")
    expanded = []
    for entry in found:
        if entry.source_type == SourceType.CATALOG_ITEM.value and entry.source_id is not None:
            expanded.append((str(entry.source_id), "catalog"))
        elif entry.source_type == SourceType.PAGE.value:
            expanded.append((entry.url, "page"))
        else:
            expanded.append((entry.url, "url"))
    return expanded


def _item_id(source: str) -> int:
    try:
        return int(source)
    except ValueError:
        raise ValueError(f"Catalog item id must be an integer, got '{source}'") from None


def _index(
    pipeline: Pipeline, source: str, kind: str, force: bool, options: dict[str, Any]
) -> IndexResult:
    indexer = pipeline.indexer
    if kind in ("url", "page"):
        return indexer.index_url(source, source_type=kind, force_reindex=force)
    if kind == "document":
        return indexer.index_document(source, force_reindex=force)
    if kind == "api":
        return indexer.index_api_endpoint(source, options, force_reindex=force)
    if kind == "catalog":
        return indexer.index_catalog_item(_item_id(source), force_reindex=force)
    text = _read_text(source)
    return indexer.index_text(source, text, force_reindex=force)


def _enqueue(
    pipeline: Pipeline,
    source: str,
    kind: str,
    force: bool,
    options: dict[str, Any],
    priority: int | None,
) -> int:
    if kind in ("url", "page"):
        job_type, payload = JobType.CRAWL_URL, CrawlUrlPayload(
            url=source, force_reindex=force, source_type=kind
        )
    elif kind == "document":
        job_type, payload = JobType.PROCESS_DOCUMENT, ProcessDocumentPayload(
            path=source, force_reindex=force
        )
    elif kind == "api":
        job_type, payload = JobType.PROCESS_API, ProcessApiPayload(
            url=source, options=options, force_reindex=force
        )
    elif kind == "catalog":
        job_type, payload = JobType.PROCESS_CATALOG_ITEM, ProcessCatalogItemPayload(
            item_id=_item_id(source), force_reindex=force
        )
    else:
        job_type, payload = JobType.PROCESS_CONTENT, ProcessContentPayload(
            source_url=source, content=_read_text(source)
        )
    return pipeline.queue.add_job(job_type, payload, priority=priority)


def _read_text(source: str) -> str:
    path = Path(source)
    if not path.is_file():
        raise ValueError(f"File not found: {source}")
    return path.read_text(encoding="utf-8", errors="replace")


def _report(result: IndexResult) -> None:
    if result.already_indexed:
        console.print("  [dim]↷ Already indexed (use --force to re-index)[/]")
        return
    console.print(
        f"  [green]✓[/] {result.indexed_count}/{result.total} chunks indexed"
        + (f", {result.skipped_count} duplicate(s) skipped" if result.skipped else "")
    )
    for error in result.errors:
        console.print(f"  [yellow]⚠[/] {error}")
