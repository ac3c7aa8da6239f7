"""Forward-only migration runner for the kbindex schema.

Vec tables (vec_chunks_*) are NOT migration-managed; use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS content_chunks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    source_type     TEXT NOT NULL,
    source_url      TEXT NOT NULL DEFAULT '',
    source_id       INTEGER,
    chunk_index     INTEGER NOT NULL,
    content         TEXT NOT NULL,
    content_hash    TEXT NOT NULL,
    word_count      INTEGER NOT NULL DEFAULT 0,
    token_count     INTEGER NOT NULL DEFAULT 0,
    embedding_model TEXT NOT NULL,
    last_updated    DATETIME,
    indexed_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_chunks_position
    ON content_chunks (source_type, source_url, COALESCE(source_id, -1), chunk_index);
CREATE INDEX IF NOT EXISTS ix_chunks_source_url ON content_chunks (source_url);
CREATE INDEX IF NOT EXISTS ix_chunks_content_hash ON content_chunks (content_hash);
CREATE INDEX IF NOT EXISTS ix_chunks_source_ref ON content_chunks (source_type, source_id);

CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(content, tokenize='porter ascii');

CREATE TABLE IF NOT EXISTS ingestion_jobs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    job_type        TEXT NOT NULL,
    payload         TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    priority        INTEGER NOT NULL DEFAULT 10,
    retry_count     INTEGER NOT NULL DEFAULT 0,
    max_retries     INTEGER NOT NULL DEFAULT 3,
    error_message   TEXT,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    scheduled_at    DATETIME NOT NULL DEFAULT (datetime('now')),
    started_at      DATETIME,
    completed_at    DATETIME,
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    CHECK (retry_count <= max_retries)
);

CREATE INDEX IF NOT EXISTS ix_jobs_ready
    ON ingestion_jobs (status, scheduled_at, priority, created_at);

CREATE TABLE IF NOT EXISTS content_duplicates (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id            INTEGER NOT NULL REFERENCES content_chunks(id) ON DELETE CASCADE,
    duplicate_chunk_id  INTEGER NOT NULL REFERENCES content_chunks(id) ON DELETE CASCADE,
    duplicate_type      TEXT NOT NULL DEFAULT 'exact',
    similarity          REAL NOT NULL DEFAULT 1.0,
    created_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (chunk_id, duplicate_chunk_id),
    CHECK (duplicate_type IN ('exact', 'similar')),
    CHECK (similarity >= 0.0 AND similarity <= 1.0)
);

CREATE INDEX IF NOT EXISTS ix_duplicates_target ON content_duplicates (duplicate_chunk_id);

CREATE TABLE IF NOT EXISTS schedules (
    hook            TEXT PRIMARY KEY,
    interval        TEXT,
    next_run_at     DATETIME NOT NULL,
    last_run_at     DATETIME
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here; use ensure_vec_table() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
