"""kbindex init: create the project config, the database and the re-index schedule.

Creates:
  kbindex.yaml   project config (kept if it already exists)
  .kbindex.db    knowledge base with all migrations applied
and registers the full and stale re-index sweeps from ``reindex:``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from kbindex.cli.common import console, load_cfg, open_pipeline
from kbindex.config import write_project_config

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
) -> None:
    """Initialize a kbindex knowledge base."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    cfg_path = project_dir / "kbindex.yaml"
    existed = cfg_path.exists()
    write_project_config(project_dir)
    if existed:
        console.print(f"  [dim]↷ {cfg_path.name} already exists, kept[/]")
    else:
        console.print(f"  [green]✓[/] {cfg_path.name}")

    cfg = load_cfg(project_dir)
    db = Path(cfg.database.path)
    if not db.is_absolute():
        db = project_dir / db
    created = not db.exists()
    pipeline = open_pipeline(db, cfg, must_exist=False)
    try:
        full = pipeline.reindexer.schedule()
        stale = pipeline.reindexer.schedule_stale()
    finally:
        pipeline.close()

    console.print(f"  [green]✓[/] {db} {'created' if created else '(schema up to date)'}")
    console.print(
        f"  [green]✓[/] full re-index: {_fmt(full)} ({cfg.reindex.interval}), "
        f"stale sweep: {_fmt(stale)} ({cfg.reindex.stale_interval})"
    )
    console.print("\nNext:  kbindex ingest https://example.com/docs")


def _fmt(when) -> str:
    return when.strftime("%Y-%m-%d %H:%M") if when is not None else "not scheduled"
