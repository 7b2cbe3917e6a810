"""
Prefix-delimited tables inside one physical database.

A table is a view of every key that begins with its prefix. Keys passed to
and returned from the view are relative to the prefix.
"""

from __future__ import annotations

from collections.abc import Iterator

from .kv import Batch, KVStore, prefix_upper_bound


class TableBatch:
    """Batch that prepends the table prefix to every key."""

    def __init__(self, batch: Batch, prefix: bytes) -> None:
        self._batch = batch
        self._prefix = prefix

    def put(self, key: bytes, value: bytes) -> None:
        self._batch.put(self._prefix + key, value)

    def delete(self, key: bytes) -> None:
        self._batch.delete(self._prefix + key)

    def value_size(self) -> int:
        return self._batch.value_size()

    def write(self) -> None:
        self._batch.write()

    def reset(self) -> None:
        self._batch.reset()


class Table:
    """
    KVStore view restricted to one key prefix.

    Closing or dropping a table never touches the underlying database: the
    database is shared by every table it contains and has its own owner.
    """

    def __init__(self, db: KVStore, prefix: bytes) -> None:
        self._db = db
        self._prefix = prefix

    @property
    def prefix(self) -> bytes:
        """Key prefix delimiting the table."""
        return self._prefix

    @property
    def underlying(self) -> KVStore:
        """The physical database holding the table."""
        return self._db

    def get(self, key: bytes) -> bytes | None:
        return self._db.get(self._prefix + key)

    def has(self, key: bytes) -> bool:
        return self._db.has(self._prefix + key)

    def put(self, key: bytes, value: bytes) -> None:
        self._db.put(self._prefix + key, value)

    def delete(self, key: bytes) -> None:
        self._db.delete(self._prefix + key)

    def iterate(self, prefix: bytes = b"", start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        """Iterate over the table, yielding keys without the table prefix."""
        cut = len(self._prefix)
        for key, value in self._db.iterate(self._prefix + prefix, start):
            yield key[cut:], value

    def new_batch(self) -> TableBatch:
        return TableBatch(self._db.new_batch(), self._prefix)

    def stat(self, prop: str) -> str:
        return self._db.stat(prop)

    def compact(self, start: bytes | None, limit: bytes | None) -> None:
        low = self._prefix + (start or b"")
        high = self._prefix + limit if limit is not None else prefix_upper_bound(self._prefix)
        self._db.compact(low, high)

    def close(self) -> None:
        """Tables share their database, so there is nothing to release."""

    def drop(self) -> None:
        """Delete every key of the table."""
        batch = self._db.new_batch()
        for key, _ in self._db.iterate(self._prefix):
            batch.delete(key)
        batch.write()
