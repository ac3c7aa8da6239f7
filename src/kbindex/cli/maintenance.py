"""kbindex remove / scan-duplicates / repair / stale: knowledge base upkeep."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from kbindex.cli.common import console, load_cfg, open_pipeline, require_api_key
from kbindex.cli.errors import err_source_not_found
from kbindex.config import DEDUP_METHODS


def remove_cmd(
    source: Annotated[
        str,
        typer.Option("--source", "-s", help="Source URL or path to remove."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source with its chunks, embeddings and duplicate edges."""
    cfg = load_cfg()
    pipeline = open_pipeline(db, cfg)
    try:
        chunk_count = pipeline.repo.count_chunks(source)
        if chunk_count == 0:
            console.print(err_source_not_found(source))
            raise typer.Exit(0)

        console.print(f"\nRemove source: [bold]{source}[/]")
        console.print(f"  Chunks: {chunk_count} (with embeddings and FTS rows)")
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        removed = pipeline.indexer.purge_source(source)
    finally:
        pipeline.close()

    console.print(f"[green]✓[/] Removed {removed} chunk(s) of '{source}'")


def scan_duplicates_cmd(
    batch_size: Annotated[
        int,
        typer.Option("--batch-size", help="Chunks per scan page."),
    ] = 100,
    method: Annotated[
        str | None,
        typer.Option("--method", help="hash, similarity or both (default from config)."),
    ] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", help="Similarity threshold for near duplicates."),
    ] = None,
    all_pages: Annotated[
        bool,
        typer.Option("--all", help="Keep scanning until every chunk has been checked."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """Scan stored chunks for duplicates and record the relationships."""
    if method is not None and method not in DEDUP_METHODS:
        console.print(f"[red]Error:[/] --method must be one of: {', '.join(sorted(DEDUP_METHODS))}.")
        raise typer.Exit(1)

    cfg = load_cfg()
    if (method or cfg.dedup.method) != "hash":
        require_api_key(cfg)
    pipeline = open_pipeline(db, cfg)
    scanned = found = created = 0
    errors: list[str] = []
    try:
        after_id = 0
        while True:
            result = pipeline.detector.scan_for_duplicates(
                batch_size=batch_size,
                method=method,
                similarity_threshold=threshold,
                after_id=after_id,
            )
            scanned += result.scanned
            found += result.duplicates_found
            created += result.relationships_created
            errors.extend(result.errors)
            after_id = result.last_id
            if not all_pages or result.scanned < batch_size:
                break
        stats = pipeline.detector.get_duplicate_stats()
    finally:
        pipeline.close()

    console.print(
        f"Scanned [bold]{scanned}[/] chunk(s): {found} duplicate(s), {created} new relationship(s)"
    )
    for error in errors:
        console.print(f"  [yellow]⚠[/] {error}")
    console.print(
        f"[dim]Unique content: {stats['unique_content_percentage']}%  |  "
        f"groups: {stats['duplicate_groups']}[/]"
    )


def repair_cmd(
    limit: Annotated[
        int,
        typer.Option("--limit", help="Maximum chunks to embed in this run."),
    ] = 100,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """Embed chunks that are missing a vector for the configured model."""
    cfg = load_cfg()
    require_api_key(cfg)
    pipeline = open_pipeline(db, cfg)
    try:
        result = pipeline.indexer.repair_embeddings(limit)
    finally:
        pipeline.close()

    if result.total == 0:
        console.print("[green]✓[/] Every chunk has an embedding.")
        return
    console.print(f"[green]✓[/] Repaired {result.indexed_count}/{result.total} embedding(s)")
    for error in result.errors:
        console.print(f"  [yellow]⚠[/] {error}")


def stale_cmd(
    days: Annotated[
        int | None,
        typer.Option("--days", help="Staleness threshold (default freshness.threshold_days)."),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", help="Maximum sources to list."),
    ] = 50,
    source_type: Annotated[
        str | None,
        typer.Option("--type", help="Only sources of this type."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """List sources not indexed within the freshness threshold."""
    cfg = load_cfg()
    pipeline = open_pipeline(db, cfg)
    try:
        stale = pipeline.freshness.get_stale_content(
            threshold_days=days, limit=limit, source_type=source_type
        )
        ages = {s.source_url: pipeline.freshness.calculate_age_days(s.last_indexed) for s in stale}
    finally:
        pipeline.close()

    if not stale:
        console.print("[green]✓[/] No stale content.")
        return

    table = Table(title=f"Stale sources ({len(stale)})")
    table.add_column("Source", style="bold")
    table.add_column("Type")
    table.add_column("Chunks", justify="right")
    table.add_column("Last indexed (UTC)", style="dim")
    table.add_column("Age (days)", justify="right")
    for s in stale:
        table.add_row(
            s.source_url or "(none)",
            s.source_type,
            str(s.chunk_count),
            s.last_indexed or "never",
            str(ages[s.source_url]),
        )
    console.print(table)
