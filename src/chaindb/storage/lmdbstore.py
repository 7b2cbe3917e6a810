"""
LMDB implementation of the key-value store.

Each physical database is one LMDB environment directory. LMDB keeps keys
sorted byte-lexicographically in a single B+tree and commits every write
transaction atomically, which gives batches their atomicity for free.

LMDB rejects empty keys, so tables used with this backend must not store a
value under their bare table prefix when the prefix is empty.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Final

import lmdb

from chaindb.types import StorageError

from .batch import BufferedBatch
from .kv import check_db_name, prefix_upper_bound

logger = logging.getLogger(__name__)

DATA_FILE: Final = "data.mdb"
"""File LMDB creates inside an environment directory."""

DEFAULT_MAP_SIZE: Final = 1 << 30
"""Initial memory map size. The file is sparse, so unused space costs nothing."""

MAP_GROWTH_FACTOR: Final = 2
"""The map is multiplied by this factor whenever a write finds it full."""

PAGE_SIZE: Final = 512
"""Entries copied out per read transaction while iterating."""

STATS_PROPERTY: Final = "lmdb.stats"
"""The only property understood by `stat`."""


@contextmanager
def _wrap_errors(path: Path, operation: str) -> Iterator[None]:
    """Translate lmdb and filesystem failures into StorageError."""
    try:
        yield
    except (lmdb.Error, OSError) as e:
        raise StorageError(f"lmdb {operation} failed for {path}: {e}") from e


class LMDBStore:
    """LMDB implementation of the KVStore protocol."""

    def __init__(self, path: Path, map_size: int = DEFAULT_MAP_SIZE) -> None:
        self._path = path
        with _wrap_errors(path, "open"):
            path.mkdir(parents=True, exist_ok=True)
            self._env: lmdb.Environment | None = lmdb.open(
                str(path),
                map_size=map_size,
                subdir=True,
                max_dbs=0,
            )

    @property
    def path(self) -> Path:
        """Directory of the environment."""
        return self._path

    def _environment(self) -> lmdb.Environment:
        if self._env is None:
            raise StorageError(f"lmdb database {self._path} is closed")
        return self._env

    def get(self, key: bytes) -> bytes | None:
        """Retrieve the value stored under a key."""
        with _wrap_errors(self._path, "get"):
            with self._environment().begin() as txn:
                value = txn.get(key)
        return None if value is None else bytes(value)

    def has(self, key: bytes) -> bool:
        """Check if a key exists."""
        return self.get(key) is not None

    def _write(self, operation: str, body: Callable[[lmdb.Transaction], object]) -> None:
        """
        Run `body` in a write transaction, growing the map until it fits.

        A full map aborts the transaction, so the retry starts from scratch.
        """
        with _wrap_errors(self._path, operation):
            env = self._environment()
            while True:
                try:
                    with env.begin(write=True) as txn:
                        body(txn)
                    return
                except lmdb.MapFullError:
                    map_size = env.info()["map_size"] * MAP_GROWTH_FACTOR
                    logger.info("Growing lmdb map, path=%s map_size=%d", self._path, map_size)
                    env.set_mapsize(map_size)

    def put(self, key: bytes, value: bytes) -> None:
        """Store a value, overwriting any previous one."""
        self._write("put", lambda txn: txn.put(bytes(key), bytes(value)))

    def delete(self, key: bytes) -> None:
        """Remove a key."""
        self._write("delete", lambda txn: txn.delete(bytes(key)))

    def iterate(self, prefix: bytes = b"", start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        """
        Iterate over key/value pairs in key order.

        Each page is read in its own short read transaction, so no reader is
        held open while the caller writes.
        """
        lower = prefix + start
        upper = prefix_upper_bound(prefix)
        inclusive = True
        while True:
            entries = self._page(lower, upper, inclusive)
            yield from entries
            if len(entries) < PAGE_SIZE:
                return
            lower, inclusive = entries[-1][0], False

    def _page(
        self, lower: bytes, upper: bytes | None, inclusive: bool
    ) -> list[tuple[bytes, bytes]]:
        entries: list[tuple[bytes, bytes]] = []
        with _wrap_errors(self._path, "iterate"):
            with self._environment().begin() as txn:
                cursor = txn.cursor()
                positioned = cursor.set_range(lower) if lower else cursor.first()
                if not positioned:
                    return entries
                for key, value in cursor.iternext():
                    if not inclusive and key == lower:
                        continue
                    if upper is not None and key >= upper:
                        break
                    entries.append((bytes(key), bytes(value)))
                    if len(entries) >= PAGE_SIZE:
                        break
        return entries

    def new_batch(self) -> BufferedBatch:
        """Create a batch committed in one LMDB write transaction."""
        return BufferedBatch(self._apply)

    def _apply(self, ops: list[tuple[bytes, bytes | None]]) -> None:
        def body(txn: lmdb.Transaction) -> None:
            for key, value in ops:
                if value is None:
                    txn.delete(key)
                else:
                    txn.put(key, value)

        self._write("batch write", body)

    def stat(self, prop: str) -> str:
        """Report B+tree statistics for `lmdb.stats`."""
        if prop != STATS_PROPERTY:
            raise StorageError(f"unknown lmdb property {prop!r}")
        with _wrap_errors(self._path, "stat"):
            stats = self._environment().stat()
            info = self._environment().info()
        return (
            f"entries={stats['entries']} depth={stats['depth']} "
            f"branch_pages={stats['branch_pages']} leaf_pages={stats['leaf_pages']} "
            f"overflow_pages={stats['overflow_pages']} map_size={info['map_size']}"
        )

    def compact(self, start: bytes | None, limit: bytes | None) -> None:
        """LMDB reuses freed pages itself and has no range compaction."""
        logger.debug("Compaction is a no-op for lmdb database %s", self._path)

    def close(self) -> None:
        """Close the environment. Closing twice is allowed."""
        if self._env is None:
            return
        with _wrap_errors(self._path, "close"):
            self._env.close()
        self._env = None

    def drop(self) -> None:
        """Close the environment and delete its directory."""
        self.close()
        with _wrap_errors(self._path, "drop"):
            if self._path.exists():
                shutil.rmtree(self._path)
        logger.debug("Dropped lmdb database %s", self._path)


class LMDBProducer:
    """Produces LMDB environments stored as directories under `root`."""

    def __init__(self, root: Path, map_size: int = DEFAULT_MAP_SIZE) -> None:
        self._root = root
        self._map_size = map_size

    @property
    def root(self) -> Path:
        """Directory holding one environment directory per database."""
        return self._root

    def path_of(self, name: str) -> Path:
        """Directory of the named database."""
        return self._root / check_db_name(name)

    def open_db(self, name: str) -> LMDBStore:
        """Open the named database, creating it when missing."""
        return LMDBStore(self.path_of(name), map_size=self._map_size)

    def names(self) -> list[str]:
        """Names of the databases that currently exist."""
        if not self._root.is_dir():
            return []
        return sorted(p.name for p in self._root.iterdir() if (p / DATA_FILE).is_file())
