"""SQLite connection for one knowledge base: sqlite-vec loaded, FTS5 required.

Several ``kbindex tick`` processes may share the file, so connections run in
WAL mode and wait on a busy database instead of failing immediately.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from kbindex.errors import PersistenceError

DEFAULT_BUSY_TIMEOUT = 30.0


class Database:
    """Opens knowledge-base connections with the pragmas the pipeline relies on."""

    def __init__(self, db_path: Path | str, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, creating the file and its parent directory if missing.

        Raises:
            PersistenceError: The SQLite build lacks FTS5, or sqlite-vec cannot
                be loaded.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            _require_fts5(conn)
        except (sqlite3.Error, AttributeError) as exc:
            conn.close()
            raise PersistenceError(f"Cannot open knowledge base '{self.db_path}': {exc}") from exc
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None


def _require_fts5(conn: sqlite3.Connection) -> None:
    # raises OperationalError "no such module: fts5" on builds without it
    conn.execute("CREATE VIRTUAL TABLE temp.fts5_check USING fts5(x)")
    conn.execute("DROP TABLE temp.fts5_check")
