"""kbindex reindex / schedule: manual and scheduled re-indexing."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from kbindex.cli.common import console, load_cfg, open_pipeline, require_api_key
from kbindex.cli.errors import err_fetch, err_indexing_failed, err_source_not_found
from kbindex.config import REINDEX_INTERVALS
from kbindex.errors import FetchError, IndexingError, KbindexError


def reindex_cmd(
    url: Annotated[
        str | None,
        typer.Option("--url", help="Re-index this source now."),
    ] = None,
    stale: Annotated[
        bool,
        typer.Option("--stale", help="Queue every stale source."),
    ] = False,
    all_sources: Annotated[
        bool,
        typer.Option("--all", help="Queue every source whose origin changed or is overdue."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """Re-index one source now, or queue a stale / full sweep."""
    chosen = sum([url is not None, stale, all_sources])
    if chosen != 1:
        console.print("[red]Error:[/] Pass exactly one of --url, --stale, --all.")
        raise typer.Exit(1)

    cfg = load_cfg()
    if url is not None:
        require_api_key(cfg)
    pipeline = open_pipeline(db, cfg)
    try:
        if url is not None:
            if pipeline.repo.get_source_ref(url) is None:
                console.print(err_source_not_found(url))
                raise typer.Exit(1)
            try:
                result = pipeline.indexer.reindex_url(url)
            except FetchError as exc:
                console.print(err_fetch(url, str(exc)))
                raise typer.Exit(1)
            except IndexingError as exc:
                console.print(err_indexing_failed(url, exc.errors))
                raise typer.Exit(1)
            except KbindexError as exc:
                console.print(f"[red]Error:[/] {exc}")
                raise typer.Exit(1)
            console.print(f"[green]✓[/] {url}: {result.indexed_count}/{result.total} chunks re-indexed")
            return

        outcome = pipeline.reindexer.trigger_manual_reindex(only_stale=stale)
    finally:
        pipeline.close()

    console.print(
        f"[green]✓[/] {outcome.queued} of {outcome.total} source(s) queued"
        + (f", [yellow]{outcome.errors} error(s)[/]" if outcome.errors else "")
    )
    if outcome.queued:
        console.print("  Run:  kbindex tick  to process the queue.")


def schedule_cmd(
    interval: Annotated[
        str | None,
        typer.Option("--interval", help="Full sweep: daily, weekly, monthly or never."),
    ] = None,
    stale_interval: Annotated[
        str | None,
        typer.Option("--stale-interval", help="Stale sweep: daily, weekly, monthly or never."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """(Re)register the re-index sweeps and show the schedule."""
    for value in (interval, stale_interval):
        if value is not None and value not in REINDEX_INTERVALS:
            console.print(
                f"[red]Error:[/] Invalid interval '{value}'. "
                f"Use one of: {', '.join(sorted(REINDEX_INTERVALS))}."
            )
            raise typer.Exit(1)

    cfg = load_cfg()
    pipeline = open_pipeline(db, cfg)
    try:
        pipeline.reindexer.schedule(interval)
        pipeline.reindexer.schedule_stale(stale_interval)
        schedules = pipeline.scheduler.list_hooks()
    finally:
        pipeline.close()

    if not schedules:
        console.print("[dim]No re-index sweeps scheduled.[/]")
        return

    table = Table(title="Schedule")
    table.add_column("Hook", style="bold")
    table.add_column("Interval")
    table.add_column("Next run (UTC)")
    table.add_column("Last run (UTC)", style="dim")
    for s in schedules:
        table.add_row(s.hook, s.interval or "once", s.next_run_at, s.last_run_at or "-")
    console.print(table)
