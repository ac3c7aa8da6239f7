"""kbindex configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (KBINDEX_EMBEDDING_MODEL, KBINDEX_LOG_LEVEL, KBINDEX_DB)
  3. Per-project kbindex.yaml
  4. Global ~/.kbindex/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".kbindex"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "kbindex.yaml"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password/passwd and credential(s). Does NOT match max_tokens or token_budget.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "database",
        "embedding",
        "chunking",
        "extraction",
        "fetch",
        "dedup",
        "queue",
        "freshness",
        "reindex",
        "logging",
        "sources",
        "discovery",
    ]
)

CHUNK_METHODS: frozenset[str] = frozenset(["sentence", "paragraph", "fixed"])
DEDUP_METHODS: frozenset[str] = frozenset(["hash", "similarity", "both"])
REINDEX_INTERVALS: frozenset[str] = frozenset(["daily", "weekly", "monthly", "never"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """Knowledge base location (kbindex.yaml: database:)."""

    path: str = ".kbindex.db"


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (kbindex.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    num_retries: int = 3


@dataclass
class ChunkingCfg:
    """Chunk sizes are in characters (kbindex.yaml: chunking:)."""

    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_size: int = 100
    max_chunk_size: int = 2000
    method: str = "sentence"


@dataclass
class ExtractionCfg:
    """HTML extraction switches (kbindex.yaml: extraction:)."""

    remove_boilerplate: bool = True
    extract_main_content: bool = True


@dataclass
class FetchCfg:
    """Outbound HTTP settings (kbindex.yaml: fetch:)."""

    timeout: int = 30
    head_timeout: int = 5
    max_bytes: int = 5 * 1024 * 1024
    max_redirects: int = 3
    user_agent: str = "kbindex/0.1 (+knowledge-base indexer)"
    allow_private_hosts: bool = False


@dataclass
class DedupCfg:
    """Duplicate suppression (kbindex.yaml: dedup:)."""

    method: str = "hash"
    similarity_threshold: float = 0.95
    min_length: int = 50


@dataclass
class QueueCfg:
    """Job queue behaviour (kbindex.yaml: queue:)."""

    batch_size: int = 10
    max_retries: int = 3
    default_priority: int = 10
    max_backoff: int = 300
    retention_days: int = 30
    # seconds a job may sit in processing before it is treated as crashed; 0 disables
    stall_timeout: int = 3600


@dataclass
class FreshnessCfg:
    """Staleness accounting (kbindex.yaml: freshness:)."""

    threshold_days: int = 30


@dataclass
class ReindexCfg:
    """Scheduled re-indexing (kbindex.yaml: reindex:)."""

    interval: str = "weekly"
    stale_interval: str = "daily"
    stale_batch_size: int = 1000
    force_after_days: int = 90


@dataclass
class SourcesCfg:
    """Local origin data (kbindex.yaml: sources:). Paths to JSON files; empty = none."""

    pages_file: str = ""
    catalog_file: str = ""


@dataclass
class DiscoveryCfg:
    """URL discovery for crawling (kbindex.yaml: discovery:)."""

    # base URL checked for well-known sitemaps when sitemap_urls is empty; empty = off
    site_url: str = ""
    sitemap_urls: list[str] = field(default_factory=list)
    manual_urls: list[str] = field(default_factory=list)
    sitemap_max_depth: int = 5
    sitemap_max_urls: int = 10000


@dataclass
class LoggingCfg:
    """Log output (kbindex.yaml: logging:)."""

    level: str = "INFO"
    json: bool = False


@dataclass
class KbindexConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    extraction: ExtractionCfg = field(default_factory=ExtractionCfg)
    fetch: FetchCfg = field(default_factory=FetchCfg)
    dedup: DedupCfg = field(default_factory=DedupCfg)
    queue: QueueCfg = field(default_factory=QueueCfg)
    freshness: FreshnessCfg = field(default_factory=FreshnessCfg)
    reindex: ReindexCfg = field(default_factory=ReindexCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)
    sources: SourcesCfg = field(default_factory=SourcesCfg)
    discovery: DiscoveryCfg = field(default_factory=DiscoveryCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}', ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: KbindexConfig) -> None:
    if cfg.chunking.method not in CHUNK_METHODS:
        raise ConfigError(
            f"chunking.method must be one of {sorted(CHUNK_METHODS)}, got '{cfg.chunking.method}'"
        )
    if cfg.chunking.min_chunk_size < 1 or cfg.chunking.min_chunk_size > cfg.chunking.max_chunk_size:
        raise ConfigError("chunking.min_chunk_size must be >= 1 and <= chunking.max_chunk_size")
    if cfg.dedup.method not in DEDUP_METHODS:
        raise ConfigError(
            f"dedup.method must be one of {sorted(DEDUP_METHODS)}, got '{cfg.dedup.method}'"
        )
    if not 0.0 <= cfg.dedup.similarity_threshold <= 1.0:
        raise ConfigError("dedup.similarity_threshold must be in [0.0, 1.0]")
    for name in ("interval", "stale_interval"):
        value = getattr(cfg.reindex, name)
        if value not in REINDEX_INTERVALS:
            raise ConfigError(
                f"reindex.{name} must be one of {sorted(REINDEX_INTERVALS)}, got '{value}'"
            )
    if cfg.queue.batch_size < 1:
        raise ConfigError("queue.batch_size must be >= 1")
    if cfg.queue.stall_timeout < 0:
        raise ConfigError("queue.stall_timeout must be >= 0")
    if cfg.discovery.sitemap_max_depth < 0:
        raise ConfigError("discovery.sitemap_max_depth must be >= 0")
    if cfg.discovery.sitemap_max_urls < 1:
        raise ConfigError("discovery.sitemap_max_urls must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_section(raw: Any, defaults: Any) -> Any:
    """Overlay the keys of *raw* on the dataclass *defaults*, coercing to field types."""
    if not isinstance(raw, dict):
        return defaults
    updates: dict[str, Any] = {}
    for f in fields(defaults):
        if f.name not in raw:
            continue
        current = getattr(defaults, f.name)
        value = raw[f.name]
        if isinstance(current, bool):
            updates[f.name] = bool(value)
        elif isinstance(current, int):
            updates[f.name] = int(value)
        elif isinstance(current, float):
            updates[f.name] = float(value)
        elif isinstance(current, list):
            # a lone scalar is accepted as a one-item list
            items = value if isinstance(value, list) else [value]
            updates[f.name] = [str(v) for v in items if v is not None]
        else:
            updates[f.name] = str(value)
    return replace(defaults, **updates)


def _cfg_from_dict(data: dict[str, Any]) -> KbindexConfig:
    """Build a *KbindexConfig* from a merged raw YAML dict."""
    cfg = KbindexConfig()
    for f in fields(cfg):
        if f.name in data:
            setattr(cfg, f.name, _parse_section(data[f.name], getattr(cfg, f.name)))
    return cfg


def _apply_env_overrides(cfg: KbindexConfig) -> KbindexConfig:
    """Apply KBINDEX_* environment variable overrides."""
    if model := os.environ.get("KBINDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if level := os.environ.get("KBINDEX_LOG_LEVEL"):
        cfg.logging.level = level
    if db_path := os.environ.get("KBINDEX_DB"):
        cfg.database.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> KbindexConfig:
    """Load and return a merged *KbindexConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *kbindex.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def write_project_config(project_dir: Path, cfg: KbindexConfig | None = None) -> Path:
    """Write a starter ``kbindex.yaml`` into *project_dir* unless one exists.

    Returns:
        Path to the project config file.
    """
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists():
        return target
    cfg = cfg or KbindexConfig()
    content = (
        "# kbindex project configuration.\n"
        "# NEVER store API keys here. Use environment variables:\n"
        "#   export OPENAI_API_KEY=sk-...\n"
        "\n"
        + yaml.safe_dump(
            {
                "database": {"path": cfg.database.path},
                "embedding": {"model": cfg.embedding.model},
                "chunking": {
                    "chunk_size": cfg.chunking.chunk_size,
                    "chunk_overlap": cfg.chunking.chunk_overlap,
                    "method": cfg.chunking.method,
                },
                "dedup": {"method": cfg.dedup.method},
                "reindex": {"interval": cfg.reindex.interval},
            },
            sort_keys=False,
        )
    )
    target.write_text(content, encoding="utf-8")
    return target
