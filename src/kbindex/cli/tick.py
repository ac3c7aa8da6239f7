"""kbindex tick: one unit of cooperative work (due schedules, then one queue batch).

Meant to be run from cron, e.g. every minute:
  * * * * *  cd /srv/kb && kbindex tick
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from kbindex.cli.common import console, load_cfg, open_pipeline
from kbindex.errors import KbindexError


def tick_cmd(
    job: Annotated[
        int | None,
        typer.Option("--job", help="Execute only this job id instead of a batch."),
    ] = None,
    purge: Annotated[
        bool,
        typer.Option("--purge", help="Also delete finished jobs older than queue.retention_days."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge base (default from kbindex.yaml)."),
    ] = None,
) -> None:
    """Run due re-index hooks, then process one batch of queued jobs."""
    cfg = load_cfg()
    pipeline = open_pipeline(db, cfg)
    try:
        if job is not None:
            hooks = {}
            try:
                run = pipeline.queue.process_queue(job_id=job)
            except KbindexError as exc:
                console.print(f"[red]Error:[/] {exc}")
                raise typer.Exit(1)
        else:
            result = pipeline.tick()
            hooks, run = result.hooks_run, result.queue
        purged = pipeline.queue.purge_finished() if purge else 0
    finally:
        pipeline.close()

    for hook, outcome in hooks.items():
        console.print(
            f"  [green]✓[/] {hook}: {outcome.queued}/{outcome.total} sources queued"
            + (f", [yellow]{outcome.errors} error(s)[/]" if outcome.errors else "")
        )
    console.print(
        f"Jobs: [bold]{run.attempted}[/] attempted  |  "
        f"[green]{run.completed} completed[/]  |  "
        f"[yellow]{run.retried} retry[/]  |  "
        f"[red]{run.failed} failed[/]  |  "
        f"[dim]{run.skipped} skipped[/]"
    )
    if purged:
        console.print(f"  [dim]Purged {purged} finished job(s)[/]")
