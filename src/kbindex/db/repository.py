"""Repository pattern for all kbindex database operations.

Single interface for: chunks + FTS5 mirror, source-level aggregates, duplicate
edges, ingestion jobs, and scheduler registrations. Embedding rows live in the
per-model vec tables (see kbindex.db.vectors); the repository only deletes them
alongside their chunks.
"""

from __future__ import annotations

import re
import sqlite3
from collections.abc import Iterable, Iterator

from kbindex.db.models import (
    ContentChunk,
    DuplicateRelationship,
    IngestionJob,
    JobStatus,
    Schedule,
    SourceRef,
    StaleSource,
)
from kbindex.db.vectors import list_vec_tables
from kbindex.errors import PersistenceError

_CHUNK_COLUMNS = (
    "id, source_type, source_url, source_id, chunk_index, content, content_hash, "
    "word_count, token_count, embedding_model, last_updated, indexed_at"
)
_JOB_COLUMNS = (
    "id, job_type, payload, status, priority, retry_count, max_retries, scheduled_at, "
    "created_at, started_at, completed_at, updated_at, error_message"
)
_RUNNABLE = (JobStatus.PENDING.value, JobStatus.RETRY.value)
_TERMINAL = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)

# Keeps IN (...) lists well under SQLITE_MAX_VARIABLE_NUMBER.
_ID_BATCH = 500


class Repository:
    """Data access layer for all kbindex database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see kbindex.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: ContentChunk) -> int:
        """Insert chunk + sync FTS5 index. Returns the new id.

        Raises:
            PersistenceError: On constraint violation or any database error.
        """
        try:
            with self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO content_chunks (
                        source_type, source_url, source_id, chunk_index, content,
                        content_hash, word_count, token_count, embedding_model,
                        last_updated, indexed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, datetime('now')))
                    """,
                    (
                        chunk.source_type,
                        chunk.source_url,
                        chunk.source_id,
                        chunk.chunk_index,
                        chunk.content,
                        chunk.content_hash,
                        chunk.word_count,
                        chunk.token_count,
                        chunk.embedding_model,
                        chunk.last_updated,
                        chunk.indexed_at,
                    ),
                )
                chunk_id = cur.lastrowid
                # Keep FTS5 in sync with explicit rowid mapping
                self._conn.execute(
                    "INSERT INTO chunks_fts(rowid, content) VALUES (?, ?)",
                    (chunk_id, chunk.content),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Failed to store chunk {chunk.chunk_index} of '{chunk.source_url}': {exc}"
            ) from exc
        chunk.id = chunk_id
        return chunk_id

    def get_chunk(self, chunk_id: int) -> ContentChunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM content_chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks_by_url(self, source_url: str) -> list[ContentChunk]:
        """Return the chunks of *source_url* in chunk order."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM content_chunks WHERE source_url = ? "
            "ORDER BY source_type, chunk_index",
            (source_url,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunk_ids_for_url(self, source_url: str) -> list[int]:
        return [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM content_chunks WHERE source_url = ? ORDER BY id",
                (source_url,),
            ).fetchall()
        ]

    def count_chunks(self, source_url: str | None = None) -> int:
        if source_url is None:
            return self._conn.execute("SELECT COUNT(*) FROM content_chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM content_chunks WHERE source_url = ?", (source_url,)
        ).fetchone()[0]

    def has_chunks(
        self,
        source_url: str | None = None,
        source_type: str | None = None,
        source_id: int | None = None,
    ) -> bool:
        """Presence check: does any chunk match all of the given fields?"""
        clauses: list[str] = []
        params: list[object] = []
        if source_url is not None:
            clauses.append("source_url = ?")
            params.append(source_url)
        if source_type is not None:
            clauses.append("source_type = ?")
            params.append(source_type)
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        where = " AND ".join(clauses) if clauses else "1 = 1"
        row = self._conn.execute(
            f"SELECT 1 FROM content_chunks WHERE {where} LIMIT 1", params
        ).fetchone()
        return row is not None

    def find_by_hash(self, digest: str, exclude_url: str | None = None) -> ContentChunk | None:
        """First chunk (lowest id) with *digest*, ignoring chunks of *exclude_url*."""
        if exclude_url is None:
            row = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM content_chunks WHERE content_hash = ? "
                "ORDER BY id LIMIT 1",
                (digest,),
            ).fetchone()
        else:
            row = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM content_chunks "
                "WHERE content_hash = ? AND source_url != ? ORDER BY id LIMIT 1",
                (digest, exclude_url),
            ).fetchone()
        return _row_to_chunk(row) if row else None

    def chunks_after(self, after_id: int, limit: int) -> list[ContentChunk]:
        """Keyset page of chunks with ``id > after_id`` in id order."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM content_chunks WHERE id > ? ORDER BY id LIMIT ?",
            (after_id, limit),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def delete_chunks(self, chunk_ids: Iterable[int]) -> int:
        """Delete chunks with their embeddings (every vec table) and FTS rows.

        Runs as one transaction; embeddings go first since they reference chunks.
        Duplicate edges cascade. Returns the number of chunk rows removed.
        """
        ids = list(chunk_ids)
        if not ids:
            return 0
        vec_tables = list_vec_tables(self._conn)
        deleted = 0
        try:
            with self._conn:
                for batch in _batched(ids):
                    placeholders = ",".join("?" * len(batch))
                    for table in vec_tables:
                        self._conn.execute(
                            f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                            batch,
                        )
                    self._conn.execute(
                        f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", batch
                    )
                    cur = self._conn.execute(
                        f"DELETE FROM content_chunks WHERE id IN ({placeholders})", batch
                    )
                    deleted += cur.rowcount
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to delete chunks: {exc}") from exc
        return deleted

    def delete_source_chunks(self, source_url: str) -> int:
        """Delete every chunk of *source_url* (see delete_chunks)."""
        return self.delete_chunks(self.chunk_ids_for_url(source_url))

    def search_fts(self, query: str, limit: int = 10) -> list[tuple[ContentChunk, float]]:
        """BM25 full-text search. Returns (chunk, score) sorted best-first.

        bm25() returns negative values; lower (more negative) = better match.
        """
        # FTS5 MATCH rejects punctuation like commas as syntax errors.
        fts_query = re.sub(r"[^\w\s]", " ", query).strip()
        if not fts_query:
            return []
        fts_rows = self._conn.execute(
            "SELECT rowid, bm25(chunks_fts) AS score FROM chunks_fts "
            "WHERE content MATCH ? ORDER BY score LIMIT ?",
            (fts_query, limit),
        ).fetchall()

        results: list[tuple[ContentChunk, float]] = []
        for fts_row in fts_rows:
            chunk = self.get_chunk(fts_row["rowid"])
            if chunk is not None:
                results.append((chunk, fts_row["score"]))
        return results

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def list_sources(self) -> list[SourceRef]:
        """Distinct indexed sources, in first-indexed order."""
        rows = self._conn.execute(
            """
            SELECT source_url, source_type, source_id
            FROM content_chunks
            GROUP BY source_url, source_type, source_id
            ORDER BY MIN(id)
            """
        ).fetchall()
        return [
            SourceRef(
                source_url=r["source_url"],
                source_type=r["source_type"],
                source_id=r["source_id"],
            )
            for r in rows
        ]

    def get_source_ref(self, source_url: str) -> SourceRef | None:
        """The recorded type and origin id of *source_url*, or None if not indexed."""
        row = self._conn.execute(
            "SELECT source_url, source_type, source_id FROM content_chunks "
            "WHERE source_url = ? ORDER BY id LIMIT 1",
            (source_url,),
        ).fetchone()
        if row is None:
            return None
        return SourceRef(
            source_url=row["source_url"],
            source_type=row["source_type"],
            source_id=row["source_id"],
        )

    # ------------------------------------------------------------------
    # Freshness aggregates
    # ------------------------------------------------------------------

    def set_last_updated(self, source_url: str, timestamp: str) -> int:
        """Stamp every chunk of *source_url* with one shared ``last_updated``."""
        with self._conn:
            cur = self._conn.execute(
                "UPDATE content_chunks SET last_updated = ? WHERE source_url = ?",
                (timestamp, source_url),
            )
        return cur.rowcount

    def freshness_aggregate(self, source_url: str) -> sqlite3.Row | None:
        """MIN/MAX ``last_updated``, chunk count and MAX ``indexed_at`` for a source."""
        row = self._conn.execute(
            """
            SELECT MIN(last_updated) AS oldest_chunk,
                   MAX(last_updated) AS newest_chunk,
                   COUNT(*)          AS chunk_count,
                   MAX(indexed_at)   AS last_indexed
            FROM content_chunks
            WHERE source_url = ?
            """,
            (source_url,),
        ).fetchone()
        if row is None or row["chunk_count"] == 0:
            return None
        return row

    def last_indexed_by_source(self) -> list[tuple[str, str | None]]:
        """``(source_url, MAX(indexed_at))`` for every distinct source url."""
        rows = self._conn.execute(
            "SELECT source_url, MAX(indexed_at) AS last_indexed "
            "FROM content_chunks GROUP BY source_url"
        ).fetchall()
        return [(r["source_url"], r["last_indexed"]) for r in rows]

    def stale_sources(
        self,
        older_than: str,
        limit: int = 100,
        source_type: str | None = None,
        min_chunks: int = 1,
    ) -> list[StaleSource]:
        """Sources whose newest ``indexed_at`` is NULL or before *older_than*.

        Oldest-indexed first (NULLs sort first), capped at *limit*.
        """
        where = "WHERE source_type = ?" if source_type else ""
        params: list[object] = [source_type] if source_type else []
        params.extend([older_than, min_chunks, limit])
        rows = self._conn.execute(
            f"""
            SELECT source_url, source_type, MIN(source_id) AS source_id,
                   COUNT(*) AS chunk_count, MAX(indexed_at) AS last_indexed
            FROM content_chunks
            {where}
            GROUP BY source_url, source_type
            HAVING (MAX(indexed_at) IS NULL OR MAX(indexed_at) < ?)
               AND COUNT(*) >= ?
            ORDER BY last_indexed ASC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [
            StaleSource(
                source_url=r["source_url"],
                source_type=r["source_type"],
                chunk_count=r["chunk_count"],
                last_indexed=r["last_indexed"],
                source_id=r["source_id"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def chunk_stats(self) -> dict:
        """Totals across the chunk table plus a per-source-type breakdown."""
        row = self._conn.execute(
            """
            SELECT COUNT(*)                   AS total_chunks,
                   COUNT(DISTINCT source_url) AS unique_sources,
                   COALESCE(SUM(word_count), 0)  AS total_words,
                   COALESCE(SUM(token_count), 0) AS total_tokens
            FROM content_chunks
            """
        ).fetchone()
        by_type = {
            r["source_type"]: r["n"]
            for r in self._conn.execute(
                "SELECT source_type, COUNT(*) AS n FROM content_chunks "
                "GROUP BY source_type ORDER BY source_type"
            ).fetchall()
        }
        return {
            "total_chunks": row["total_chunks"],
            "unique_sources": row["unique_sources"],
            "total_words": row["total_words"],
            "total_tokens": row["total_tokens"],
            "by_source_type": by_type,
        }

    # ------------------------------------------------------------------
    # Duplicate relationships
    # ------------------------------------------------------------------

    def upsert_duplicate(
        self,
        chunk_id: int,
        duplicate_chunk_id: int,
        duplicate_type: str,
        similarity: float,
        now: str,
    ) -> bool:
        """Insert or refresh the edge for the ordered pair. True if newly created."""
        existing = self._conn.execute(
            "SELECT 1 FROM content_duplicates WHERE chunk_id = ? AND duplicate_chunk_id = ?",
            (chunk_id, duplicate_chunk_id),
        ).fetchone()
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO content_duplicates
                        (chunk_id, duplicate_chunk_id, duplicate_type, similarity,
                         created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(chunk_id, duplicate_chunk_id) DO UPDATE SET
                        duplicate_type = excluded.duplicate_type,
                        similarity = excluded.similarity,
                        updated_at = excluded.updated_at
                    """,
                    (chunk_id, duplicate_chunk_id, duplicate_type, similarity, now, now),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(
                f"Failed to track duplicate {chunk_id} -> {duplicate_chunk_id}: {exc}"
            ) from exc
        return existing is None

    def get_duplicates(self, chunk_id: int) -> list[DuplicateRelationship]:
        """Edges touching *chunk_id* from either end, most similar first."""
        rows = self._conn.execute(
            """
            SELECT chunk_id, duplicate_chunk_id, duplicate_type, similarity,
                   created_at, updated_at
            FROM content_duplicates
            WHERE chunk_id = ? OR duplicate_chunk_id = ?
            ORDER BY similarity DESC, id
            """,
            (chunk_id, chunk_id),
        ).fetchall()
        return [_row_to_duplicate(r) for r in rows]

    def delete_duplicates(self, chunk_id: int) -> int:
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM content_duplicates WHERE chunk_id = ? OR duplicate_chunk_id = ?",
                (chunk_id, chunk_id),
            )
        return cur.rowcount

    def duplicate_stats(self) -> dict:
        row = self._conn.execute(
            """
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN duplicate_type = 'exact' THEN 1 ELSE 0 END) AS exact,
                   SUM(CASE WHEN duplicate_type = 'similar' THEN 1 ELSE 0 END) AS similar,
                   AVG(similarity) AS avg_similarity,
                   COUNT(DISTINCT chunk_id) AS chunks_with_duplicates
            FROM content_duplicates
            """
        ).fetchone()
        hashes = self._conn.execute(
            """
            SELECT COUNT(*) AS total_chunks,
                   COUNT(DISTINCT content_hash) AS unique_hashes,
                   (SELECT COUNT(*) FROM (
                       SELECT content_hash FROM content_chunks
                       GROUP BY content_hash HAVING COUNT(*) > 1
                   )) AS dup_groups
            FROM content_chunks
            """
        ).fetchone()
        unique_pct = (
            round(hashes["unique_hashes"] / hashes["total_chunks"] * 100, 2)
            if hashes["total_chunks"]
            else 0.0
        )
        return {
            "total_relationships": row["total"],
            "exact_duplicates": row["exact"] or 0,
            "similar_duplicates": row["similar"] or 0,
            "avg_similarity": round(row["avg_similarity"] or 0.0, 4),
            "chunks_with_duplicates": row["chunks_with_duplicates"],
            "duplicate_groups": hashes["dup_groups"],
            "unique_content_percentage": unique_pct,
        }

    def hash_groups(self, min_group_size: int = 2, limit: int = 50) -> list[tuple[str, list[int]]]:
        """Chunk ids grouped by ``content_hash``, largest groups first."""
        rows = self._conn.execute(
            """
            SELECT content_hash, COUNT(*) AS n, GROUP_CONCAT(id) AS ids
            FROM content_chunks
            GROUP BY content_hash
            HAVING COUNT(*) >= ?
            ORDER BY n DESC, MIN(id)
            LIMIT ?
            """,
            (min_group_size, limit),
        ).fetchall()
        return [
            (r["content_hash"], sorted(int(i) for i in r["ids"].split(","))) for r in rows
        ]

    # ------------------------------------------------------------------
    # Ingestion jobs
    # ------------------------------------------------------------------

    def add_job(
        self,
        job_type: str,
        payload: str,
        priority: int,
        max_retries: int,
        scheduled_at: str,
        now: str,
    ) -> int:
        with self._conn:
            cur = self._conn.execute(
                """
                INSERT INTO ingestion_jobs
                    (job_type, payload, status, priority, max_retries,
                     scheduled_at, created_at, updated_at)
                VALUES (?, ?, 'pending', ?, ?, ?, ?, ?)
                """,
                (job_type, payload, priority, max_retries, scheduled_at, now, now),
            )
        return cur.lastrowid

    def get_job(self, job_id: int) -> IngestionJob | None:
        row = self._conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return _row_to_job(row) if row else None

    def claim_job(self, job_id: int, now: str) -> bool:
        """Move a runnable job to ``processing``. False if someone else got there first."""
        with self._conn:
            cur = self._conn.execute(
                """
                UPDATE ingestion_jobs
                SET status = 'processing', started_at = ?, updated_at = ?
                WHERE id = ? AND status IN (?, ?)
                """,
                (now, now, job_id, *_RUNNABLE),
            )
        return cur.rowcount == 1

    def complete_job(self, job_id: int, now: str) -> None:
        with self._conn:
            self._conn.execute(
                """
                UPDATE ingestion_jobs
                SET status = 'completed', completed_at = ?, updated_at = ?, error_message = NULL
                WHERE id = ?
                """,
                (now, now, job_id),
            )

    def retry_job(
        self, job_id: int, retry_count: int, scheduled_at: str, error: str, now: str
    ) -> None:
        with self._conn:
            self._conn.execute(
                """
                UPDATE ingestion_jobs
                SET status = 'retry', retry_count = ?, scheduled_at = ?,
                    error_message = ?, updated_at = ?
                WHERE id = ?
                """,
                (retry_count, scheduled_at, error, now, job_id),
            )

    def fail_job(self, job_id: int, error: str, now: str) -> None:
        with self._conn:
            self._conn.execute(
                """
                UPDATE ingestion_jobs
                SET status = 'failed', error_message = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (error, now, now, job_id),
            )

    def ready_job_ids(self, now: str, limit: int) -> list[int]:
        """Runnable jobs due at *now*, by priority then age."""
        rows = self._conn.execute(
            """
            SELECT id FROM ingestion_jobs
            WHERE status IN (?, ?) AND scheduled_at <= ?
            ORDER BY priority ASC, created_at ASC, id ASC
            LIMIT ?
            """,
            (*_RUNNABLE, now, limit),
        ).fetchall()
        return [r[0] for r in rows]

    def stalled_jobs(self, started_before: str) -> list[IngestionJob]:
        """Jobs still ``processing`` that were claimed before *started_before*."""
        rows = self._conn.execute(
            f"""
            SELECT {_JOB_COLUMNS} FROM ingestion_jobs
            WHERE status = 'processing' AND started_at < ?
            ORDER BY started_at ASC, id ASC
            """,
            (started_before,),
        ).fetchall()
        return [_row_to_job(r) for r in rows]

    def delete_job(self, job_id: int) -> bool:
        with self._conn:
            cur = self._conn.execute("DELETE FROM ingestion_jobs WHERE id = ?", (job_id,))
        return cur.rowcount == 1

    def job_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for r in self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM ingestion_jobs GROUP BY status"
        ).fetchall():
            counts[r["status"]] = r["n"]
        return counts

    def purge_jobs(self, before: str) -> int:
        """Delete terminal jobs last touched before *before*."""
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM ingestion_jobs WHERE status IN (?, ?) AND updated_at < ?",
                (*_TERMINAL, before),
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def upsert_schedule(self, hook: str, interval: str | None, next_run_at: str) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO schedules (hook, interval, next_run_at)
                VALUES (?, ?, ?)
                ON CONFLICT(hook) DO UPDATE SET
                    interval = excluded.interval,
                    next_run_at = excluded.next_run_at
                """,
                (hook, interval, next_run_at),
            )

    def get_schedule(self, hook: str) -> Schedule | None:
        row = self._conn.execute(
            "SELECT hook, interval, next_run_at, last_run_at FROM schedules WHERE hook = ?",
            (hook,),
        ).fetchone()
        return _row_to_schedule(row) if row else None

    def list_schedules(self) -> list[Schedule]:
        rows = self._conn.execute(
            "SELECT hook, interval, next_run_at, last_run_at FROM schedules ORDER BY next_run_at"
        ).fetchall()
        return [_row_to_schedule(r) for r in rows]

    def due_schedules(self, now: str) -> list[Schedule]:
        rows = self._conn.execute(
            "SELECT hook, interval, next_run_at, last_run_at FROM schedules "
            "WHERE next_run_at <= ? ORDER BY next_run_at, hook",
            (now,),
        ).fetchall()
        return [_row_to_schedule(r) for r in rows]

    def mark_schedule_run(self, hook: str, last_run_at: str, next_run_at: str) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE schedules SET last_run_at = ?, next_run_at = ? WHERE hook = ?",
                (last_run_at, next_run_at, hook),
            )

    def delete_schedule(self, hook: str) -> bool:
        with self._conn:
            cur = self._conn.execute("DELETE FROM schedules WHERE hook = ?", (hook,))
        return cur.rowcount == 1


# ------------------------------------------------------------------
# Row -> model helpers
# ------------------------------------------------------------------

def _batched(ids: list[int]) -> Iterator[list[int]]:
    for start in range(0, len(ids), _ID_BATCH):
        yield ids[start : start + _ID_BATCH]


def _row_to_chunk(row: sqlite3.Row) -> ContentChunk:
    return ContentChunk(
        id=row["id"],
        source_type=row["source_type"],
        source_url=row["source_url"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        content_hash=row["content_hash"],
        word_count=row["word_count"],
        token_count=row["token_count"],
        embedding_model=row["embedding_model"],
        last_updated=row["last_updated"],
        indexed_at=row["indexed_at"],
    )


def _row_to_job(row: sqlite3.Row) -> IngestionJob:
    return IngestionJob(
        id=row["id"],
        job_type=row["job_type"],
        payload=row["payload"],
        status=row["status"],
        priority=row["priority"],
        retry_count=row["retry_count"],
        max_retries=row["max_retries"],
        scheduled_at=row["scheduled_at"],
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        updated_at=row["updated_at"],
        error_message=row["error_message"],
    )


def _row_to_duplicate(row: sqlite3.Row) -> DuplicateRelationship:
    return DuplicateRelationship(
        chunk_id=row["chunk_id"],
        duplicate_chunk_id=row["duplicate_chunk_id"],
        duplicate_type=row["duplicate_type"],
        similarity=row["similarity"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_schedule(row: sqlite3.Row) -> Schedule:
    return Schedule(
        hook=row["hook"],
        interval=row["interval"],
        next_run_at=row["next_run_at"],
        last_run_at=row["last_run_at"],
    )
