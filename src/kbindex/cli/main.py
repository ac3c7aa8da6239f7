"""kbindex CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from kbindex.cli.ingest import ingest_cmd
from kbindex.cli.init import init_cmd
from kbindex.cli.maintenance import remove_cmd, repair_cmd, scan_duplicates_cmd, stale_cmd
from kbindex.cli.reindex import reindex_cmd, schedule_cmd
from kbindex.cli.status import status_cmd
from kbindex.cli.tick import tick_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("kbindex")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kbindex {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="kbindex",
    help=(
        "kbindex: knowledge base indexing pipeline.\n\n"
        "  kbindex ingest   Fetch, chunk, embed and store sources.\n"
        "  kbindex tick     Run due re-index sweeps and one batch of queued jobs."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """kbindex: knowledge base indexing pipeline."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("tick")(tick_cmd)
app.command("reindex")(reindex_cmd)
app.command("schedule")(schedule_cmd)
app.command("stale")(stale_cmd)
app.command("scan-duplicates")(scan_duplicates_cmd)
app.command("repair")(repair_cmd)
app.command("remove")(remove_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed kbindex version."""
    typer.echo(f"kbindex {_installed_version()}")


if __name__ == "__main__":
    app()
