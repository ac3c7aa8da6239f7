"""kbindex status command.

Shows the knowledge base overview: chunk and embedding totals, the job queue,
duplicate tracking, content freshness and the re-index schedule.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from kbindex.cli.common import console, db_path, load_cfg, open_pipeline
from kbindex.db.models import Schedule
from kbindex.freshness import FreshnessStats


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """Show knowledge base, queue, duplicate and freshness status."""
    cfg = load_cfg()
    path = db_path(db, cfg)
    if not path.exists():
        console.print(
            Panel(
                f"[yellow]No database found at {path}.[/]\n"
                "  Run:  kbindex init",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    pipeline = open_pipeline(db, cfg)
    try:
        indexing = pipeline.indexer.get_indexing_stats()
        queue = pipeline.queue.get_queue_stats()
        duplicates = pipeline.detector.get_duplicate_stats()
        freshness = pipeline.freshness.get_freshness_stats()
        schedules = pipeline.scheduler.list_hooks()
    finally:
        pipeline.close()

    size_mb = path.stat().st_size / (1024 * 1024)
    _show_knowledge_panel(f"{path} ({size_mb:.1f} MB)", cfg.embedding.model, indexing)
    _show_queue_panel(queue)
    _show_duplicates_panel(duplicates)
    _show_freshness_panel(freshness, cfg.freshness.threshold_days)
    _show_schedule_panel(schedules)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_knowledge_panel(db_info: str, model: str, stats: dict) -> None:
    lines = [
        f"Database:   {db_info}",
        f"Model:      {model}",
        f"Sources: [bold]{stats['unique_sources']}[/]  |  "
        f"Chunks: [bold]{stats['total_chunks']:,}[/]  |  "
        f"Embeddings: [bold]{stats['total_embeddings']:,}[/]",
        f"Words: {stats['total_words']:,}  |  Tokens: {stats['total_tokens']:,}",
    ]
    for source_type, count in stats["by_source_type"].items():
        lines.append(f"  [dim]{source_type}[/] {count:,}")
    missing = stats["total_chunks"] - stats["total_embeddings"]
    if missing > 0:
        lines.append(f"[yellow]{missing} chunk(s) without embedding[/]  Run:  kbindex repair")
    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))


def _show_queue_panel(counts: dict[str, int]) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Status", style="bold")
    table.add_column("Jobs", justify="right")
    for status, n in counts.items():
        if status != "total":
            table.add_row(status, str(n))
    console.print(
        Panel(table, title=f"[bold]Queue[/] [dim]({counts.get('total', 0)} jobs)[/]", expand=False)
    )


def _show_duplicates_panel(stats: dict) -> None:
    lines = [
        f"Relationships: [bold]{stats['total_relationships']}[/]  "
        f"(exact {stats['exact_duplicates']}, similar {stats['similar_duplicates']})",
        f"Chunks with duplicates: {stats['chunks_with_duplicates']}",
        f"Hash groups: {stats['duplicate_groups']}  |  "
        f"Unique content: {stats['unique_content_percentage']}%",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Duplicates[/]", expand=False))


def _show_freshness_panel(stats: FreshnessStats, threshold_days: int) -> None:
    if not stats.total_sources:
        console.print(
            Panel("[dim]No sources indexed yet.[/]", title="[bold]Freshness[/]", expand=False)
        )
        return

    lines = [
        f"Fresh: [green]{stats.fresh_sources}[/]  |  "
        f"Stale: [yellow]{stats.stale_sources}[/]  "
        f"[dim](threshold {threshold_days} days)[/]",
        f"Average age: {stats.average_age_days:.1f} days  |  "
        f"oldest {stats.oldest_content_days}  |  newest {stats.newest_content_days}",
    ]
    for label, count in stats.by_age_range.items():
        lines.append(f"  [dim]{label:>8} days[/] {count}")
    console.print(Panel("\n".join(lines), title="[bold]Freshness[/]", expand=False))


def _show_schedule_panel(schedules: list[Schedule]) -> None:
    if not schedules:
        console.print(
            Panel(
                "[dim]No re-index sweeps scheduled.[/]\n  Run:  kbindex schedule",
                title="[bold]Schedule[/]",
                expand=False,
            )
        )
        return

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Hook", style="bold")
    table.add_column("Interval", style="dim")
    table.add_column("Next run")
    for s in schedules:
        table.add_row(s.hook, s.interval or "once", s.next_run_at)
    console.print(Panel(table, title="[bold]Schedule[/]", expand=False))
