"""
Share open database handles within a process.

Opening the same physical database twice would give two independent
connections (or fail outright for LMDB). The cached producer keeps one handle
per name and counts its users; the handle is closed when the last user closes.
"""

from __future__ import annotations

import logging

from .kv import DBProducer, KVStore
from .wrapper import StoreWrapper

logger = logging.getLogger(__name__)


class CachedStore(StoreWrapper):
    """One user's reference to a shared handle."""

    def __init__(self, db: KVStore, producer: CachedProducer, name: str) -> None:
        super().__init__(db)
        self._producer = producer
        self._name = name
        self._closed = False

    def close(self) -> None:
        """Release this reference. Closing twice is allowed."""
        if self._closed:
            return
        self._closed = True
        self._producer._release(self._name)

    def drop(self) -> None:
        """Evict the shared handle and delete the database."""
        self._closed = True
        self._producer._evict(self._name)
        self._db.drop()


class CachedProducer:
    """Producer memoizing open handles by database name."""

    def __init__(self, producer: DBProducer) -> None:
        self._producer = producer
        self._handles: dict[str, KVStore] = {}
        self._refs: dict[str, int] = {}

    def open_db(self, name: str) -> CachedStore:
        """Open the named database, reusing the handle when already open."""
        if name not in self._handles:
            self._handles[name] = self._producer.open_db(name)
            self._refs[name] = 0
        self._refs[name] += 1
        return CachedStore(self._handles[name], self, name)

    def names(self) -> list[str]:
        return self._producer.names()

    def open_names(self) -> list[str]:
        """Names of the databases currently held open."""
        return sorted(self._handles)

    def _release(self, name: str) -> None:
        if name not in self._refs:
            return
        self._refs[name] -= 1
        if self._refs[name] == 0:
            del self._refs[name]
            self._handles.pop(name).close()
            logger.debug("Closed cached database %s", name)

    def _evict(self, name: str) -> None:
        self._refs.pop(name, None)
        self._handles.pop(name, None)

    def close(self) -> None:
        """Close every handle regardless of outstanding references."""
        for name in list(self._handles):
            self._refs.pop(name, None)
            self._handles.pop(name).close()
