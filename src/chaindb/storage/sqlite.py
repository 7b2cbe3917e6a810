"""
SQLite implementation of the key-value store.

Each physical database is a directory holding a single SQLite file with one
table of BLOB keys and values. SQLite compares BLOBs with memcmp, so the
primary key index already yields byte-lexicographic order.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Final

from chaindb.types import StorageError

from .batch import BufferedBatch
from .kv import check_db_name, prefix_upper_bound

logger = logging.getLogger(__name__)

DB_FILE: Final = "kv.sqlite"
"""File name of the SQLite database inside its directory."""

PAGE_SIZE: Final = 512
"""Rows fetched per query while iterating."""

STATS_PROPERTY: Final = "sqlite.stats"
"""The only property understood by `stat`."""

CREATE_TABLE: Final = """
    CREATE TABLE IF NOT EXISTS kv (
        key BLOB PRIMARY KEY,
        value BLOB NOT NULL
    ) WITHOUT ROWID
"""
"""SQL to create the key-value table."""


@contextmanager
def _wrap_errors(path: Path, operation: str) -> Iterator[None]:
    """Translate sqlite and filesystem failures into StorageError."""
    try:
        yield
    except (sqlite3.Error, OSError) as e:
        raise StorageError(f"sqlite {operation} failed for {path}: {e}") from e


class SQLiteStore:
    """
    SQLite implementation of the KVStore protocol.

    Every point write commits immediately.
    Batches commit all their operations in a single transaction.
    """

    def __init__(self, path: Path) -> None:
        """
        Open or create the database stored in `path`.

        Args:
            path: Directory of the database. Created when missing.
        """
        self._path = path
        with _wrap_errors(path, "open"):
            path.mkdir(parents=True, exist_ok=True)
            self._conn: sqlite3.Connection | None = sqlite3.connect(
                str(path / DB_FILE),
                check_same_thread=False,
            )

            # Only effective on a fresh file, before the first table exists.
            self._conn.execute("PRAGMA auto_vacuum = INCREMENTAL")
            self._conn.execute(CREATE_TABLE)
            self._conn.commit()

    @property
    def path(self) -> Path:
        """Directory of the database."""
        return self._path

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"sqlite database {self._path} is closed")
        return self._conn

    # -------------------------------------------------------------------------
    # Point Operations
    # -------------------------------------------------------------------------

    def get(self, key: bytes) -> bytes | None:
        """Retrieve the value stored under a key."""
        with _wrap_errors(self._path, "get"):
            row = self._db().execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else bytes(row[0])

    def has(self, key: bytes) -> bool:
        """Check if a key exists."""
        with _wrap_errors(self._path, "has"):
            row = self._db().execute("SELECT 1 FROM kv WHERE key = ?", (key,)).fetchone()
        return row is not None

    def put(self, key: bytes, value: bytes) -> None:
        """Store a value, overwriting any previous one."""
        conn = self._db()
        with _wrap_errors(self._path, "put"):
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (bytes(key), bytes(value)),
            )
            conn.commit()

    def delete(self, key: bytes) -> None:
        """Remove a key."""
        conn = self._db()
        with _wrap_errors(self._path, "delete"):
            conn.execute("DELETE FROM kv WHERE key = ?", (bytes(key),))
            conn.commit()

    # -------------------------------------------------------------------------
    # Range Operations
    # -------------------------------------------------------------------------

    def iterate(self, prefix: bytes = b"", start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        """
        Iterate over key/value pairs in key order.

        Rows are fetched page by page, each page starting after the last key
        seen. Writes made between pages are therefore visible, and never
        invalidate the iteration.
        """
        lower = prefix + start
        upper = prefix_upper_bound(prefix)
        inclusive = True
        while True:
            rows = self._page(lower, upper, inclusive)
            for key, value in rows:
                yield key, value
            if len(rows) < PAGE_SIZE:
                return
            lower, inclusive = rows[-1][0], False

    def _page(
        self, lower: bytes, upper: bytes | None, inclusive: bool
    ) -> list[tuple[bytes, bytes]]:
        clauses = ["key >= ?" if inclusive else "key > ?"]
        params: list[bytes | int] = [lower]
        if upper is not None:
            clauses.append("key < ?")
            params.append(upper)
        params.append(PAGE_SIZE)
        query = f"SELECT key, value FROM kv WHERE {' AND '.join(clauses)} ORDER BY key LIMIT ?"
        with _wrap_errors(self._path, "iterate"):
            rows = self._db().execute(query, params).fetchall()
        return [(bytes(k), bytes(v)) for k, v in rows]

    def new_batch(self) -> BufferedBatch:
        """Create a batch committed in one SQLite transaction."""
        return BufferedBatch(self._apply)

    def _apply(self, ops: list[tuple[bytes, bytes | None]]) -> None:
        conn = self._db()
        with _wrap_errors(self._path, "batch write"):
            # The connection context manager commits, or rolls back on error.
            with conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                    [(k, v) for k, v in ops if v is not None],
                )
                conn.executemany(
                    "DELETE FROM kv WHERE key = ?",
                    [(k,) for k, v in ops if v is None],
                )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def stat(self, prop: str) -> str:
        """Report page and row statistics for `sqlite.stats`."""
        if prop != STATS_PROPERTY:
            raise StorageError(f"unknown sqlite property {prop!r}")
        conn = self._db()
        with _wrap_errors(self._path, "stat"):
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            free_pages = conn.execute("PRAGMA freelist_count").fetchone()[0]
            rows = conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]
        return (
            f"rows={rows} pages={page_count} page_size={page_size} "
            f"free_pages={free_pages} size={page_count * page_size}"
        )

    def compact(self, start: bytes | None, limit: bytes | None) -> None:
        """
        Return free pages to the filesystem.

        SQLite cannot compact a key range, so the range is ignored.
        """
        conn = self._db()
        with _wrap_errors(self._path, "compact"):
            conn.execute("PRAGMA incremental_vacuum").fetchall()
            conn.commit()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection. Closing twice is allowed."""
        if self._conn is None:
            return
        with _wrap_errors(self._path, "close"):
            self._conn.close()
        self._conn = None

    def drop(self) -> None:
        """Close the database and delete its directory."""
        self.close()
        with _wrap_errors(self._path, "drop"):
            if self._path.exists():
                shutil.rmtree(self._path)
        logger.debug("Dropped sqlite database %s", self._path)


class SQLiteProducer:
    """Produces SQLite databases stored as directories under `root`."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        """Directory holding one sub-directory per database."""
        return self._root

    def path_of(self, name: str) -> Path:
        """Directory of the named database."""
        return self._root / check_db_name(name)

    def open_db(self, name: str) -> SQLiteStore:
        """Open the named database, creating it when missing."""
        return SQLiteStore(self.path_of(name))

    def names(self) -> list[str]:
        """Names of the databases that currently exist."""
        if not self._root.is_dir():
            return []
        return sorted(p.name for p in self._root.iterdir() if (p / DB_FILE).is_file())
