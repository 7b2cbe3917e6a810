"""Base class for stores that decorate another store."""

from __future__ import annotations

from collections.abc import Iterator

from .kv import Batch, KVStore


class StoreWrapper:
    """
    Forwards every KVStore operation to `underlying`.

    Subclasses override only the operations they change.
    """

    def __init__(self, db: KVStore) -> None:
        self._db = db

    @property
    def underlying(self) -> KVStore:
        """The wrapped store."""
        return self._db

    def get(self, key: bytes) -> bytes | None:
        return self._db.get(key)

    def has(self, key: bytes) -> bool:
        return self._db.has(key)

    def put(self, key: bytes, value: bytes) -> None:
        self._db.put(key, value)

    def delete(self, key: bytes) -> None:
        self._db.delete(key)

    def iterate(self, prefix: bytes = b"", start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        return self._db.iterate(prefix, start)

    def new_batch(self) -> Batch:
        return self._db.new_batch()

    def stat(self, prop: str) -> str:
        return self._db.stat(prop)

    def compact(self, start: bytes | None, limit: bytes | None) -> None:
        self._db.compact(start, limit)

    def close(self) -> None:
        self._db.close()

    def drop(self) -> None:
        self._db.drop()
