"""kbindex database layer."""

from kbindex.db.connection import Database
from kbindex.db.migrations import MIGRATIONS, run_migrations
from kbindex.db.repository import Repository
from kbindex.db.schema import initialize
from kbindex.db.vectors import VectorStore, ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "Repository",
    "VectorStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
