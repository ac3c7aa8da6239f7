"""Per-model sqlite-vec tables and the vector-store collaborator.

One ``vec0`` table per embedding model (``vec_chunks_<slug>``), cosine metric,
rowid = ``content_chunks.id``. Tables are created lazily on the first store for
a model, since the dimension is only known once a vector exists.
"""

from __future__ import annotations

import json
import re
import sqlite3
from dataclasses import dataclass

from kbindex.errors import EmbeddingError


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_chunks_{model_slug}"


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the names of all per-model vec tables."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_chunks_%' "
        "AND sql LIKE 'CREATE VIRTUAL TABLE%'"
    ).fetchall()
    return [r[0] for r in rows]


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_chunks_{model_slug}).
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    if not vec_table_exists(conn, table):
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
    return table


@dataclass
class VectorHit:
    chunk_id: int
    similarity: float
    source_url: str
    source_type: str


class VectorStore:
    """sqlite-vec backed store: ``store()`` and ``similarity_search()``.

    Similarity is reported as ``1 - cosine distance`` so that 1.0 means
    identical direction.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def store(self, chunk_id: int, vector: list[float], model: str) -> None:
        """Insert or replace the embedding of *chunk_id* for *model*.

        Raises:
            EmbeddingError: If the vector is empty or the insert fails
                (e.g. a dimension mismatch with the existing table).
        """
        if not vector:
            raise EmbeddingError(f"Empty embedding for chunk {chunk_id}")
        try:
            table = ensure_vec_table(self._conn, model_to_slug(model), len(vector))
            with self._conn:
                self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (chunk_id,))
                self._conn.execute(
                    f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
                    (chunk_id, json.dumps(vector)),
                )
        except sqlite3.Error as exc:
            raise EmbeddingError(
                f"Failed to store embedding for chunk {chunk_id}: {exc}"
            ) from exc

    def similarity_search(
        self,
        vector: list[float],
        model: str,
        limit: int = 10,
        threshold: float = 0.0,
        exclude_ids: set[int] | list[int] | None = None,
    ) -> list[VectorHit]:
        """Nearest neighbours of *vector*, best first, at or above *threshold*."""
        table = vec_table_name(model_to_slug(model))
        if not vec_table_exists(self._conn, table):
            return []
        excluded = set(exclude_ids or ())
        k = limit + len(excluded)
        try:
            rows = self._conn.execute(
                f"SELECT rowid, distance FROM {table} WHERE embedding MATCH ? "
                "ORDER BY distance LIMIT ?",
                (json.dumps(vector), k),
            ).fetchall()
        except sqlite3.Error as exc:
            raise EmbeddingError(f"Vector search failed: {exc}") from exc

        hits: list[VectorHit] = []
        for row in rows:
            chunk_id = row["rowid"]
            if chunk_id in excluded:
                continue
            similarity = 1.0 - float(row["distance"])
            if similarity < threshold:
                break
            meta = self._conn.execute(
                "SELECT source_url, source_type FROM content_chunks WHERE id = ?",
                (chunk_id,),
            ).fetchone()
            if meta is None:
                continue
            hits.append(
                VectorHit(
                    chunk_id=chunk_id,
                    similarity=max(0.0, min(1.0, similarity)),
                    source_url=meta["source_url"],
                    source_type=meta["source_type"],
                )
            )
            if len(hits) >= limit:
                break
        return hits

    def count(self, model: str | None = None) -> int:
        """Number of stored embeddings for *model*, or across all models."""
        tables = (
            [vec_table_name(model_to_slug(model))] if model else list_vec_tables(self._conn)
        )
        total = 0
        for table in tables:
            if vec_table_exists(self._conn, table):
                total += self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return total

    def chunk_ids_missing_embedding(self, model: str, limit: int = 100) -> list[int]:
        """Chunk ids tagged with *model* that have no row in its vec table."""
        table = vec_table_name(model_to_slug(model))
        if not vec_table_exists(self._conn, table):
            rows = self._conn.execute(
                "SELECT id FROM content_chunks WHERE embedding_model = ? ORDER BY id LIMIT ?",
                (model, limit),
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT id FROM content_chunks WHERE embedding_model = ? "
                f"AND id NOT IN (SELECT rowid FROM {table}) ORDER BY id LIMIT ?",
                (model, limit),
            ).fetchall()
        return [r[0] for r in rows]
