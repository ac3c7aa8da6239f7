"""Helpers shared by the CLI commands: config loading and pipeline wiring."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from kbindex.cli.errors import err_config, err_no_api_key, err_no_db, err_sources_file
from kbindex.config import ConfigError, KbindexConfig, load_config
from kbindex.embeddings import validate_api_key
from kbindex.errors import EmbeddingError, ParseError
from kbindex.logging import setup_logging
from kbindex.pipeline import Pipeline

console = Console()


def load_cfg(project_dir: Path | None = None) -> KbindexConfig:
    """Load config (default: the working directory) and configure logging, or exit 1."""
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    setup_logging(cfg.logging.level, cfg.logging.json)
    return cfg


def db_path(db: Path | None, cfg: KbindexConfig) -> Path:
    return db if db is not None else Path(cfg.database.path)


def open_pipeline(db: Path | None, cfg: KbindexConfig, must_exist: bool = True) -> Pipeline:
    path = db_path(db, cfg)
    if must_exist and not path.exists():
        console.print(err_no_db(str(path)))
        raise typer.Exit(1)
    try:
        return Pipeline.open(cfg, path)
    except ParseError as exc:
        console.print(err_sources_file(str(exc)))
        raise typer.Exit(1)


def require_api_key(cfg: KbindexConfig) -> None:
    """Exit 1 with an actionable message when the embedding provider key is unset."""
    try:
        validate_api_key(cfg.embedding.model)
    except EmbeddingError:
        model = cfg.embedding.model
        provider = model.split("/")[0] if "/" in model else "openai"
        console.print(err_no_api_key(provider))
        raise typer.Exit(1)
