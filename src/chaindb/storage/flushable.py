"""
Buffered writes and the clean/dirty flush protocol.

Application writes are kept in memory by a Flushable wrapper and reach disk
only on flush. Several physical databases are flushed together by a
SyncedPool, which brackets every flush with markers stored under a reserved
key of each database:

    [marker byte][flush id]

1. Every database is marked dirty.
2. Buffered data is written to every database.
3. Every database is marked clean with the new flush id.

A crash anywhere inside that sequence leaves at least one database dirty, or
two databases with different ids. Either way the set is detected as torn on
the next start and is rebuilt as a whole.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Final

from chaindb.types import TornWriteError

from .batch import BufferedBatch
from .kv import DBProducer, KVStore
from .wrapper import StoreWrapper

logger = logging.getLogger(__name__)

CLEAN_MARKER: Final = 0xC0
"""Marker byte of a database whose last flush completed."""

DIRTY_MARKER: Final = 0xDE
"""Marker byte of a database with a flush in progress."""


class Flushable(StoreWrapper):
    """
    Store wrapper buffering every write in memory until `flush`.

    Reads and iteration observe buffered writes merged over the underlying
    store, so the wrapper behaves like a single consistent store.
    """

    def __init__(self, db: KVStore, on_close: Callable[[], None] | None = None) -> None:
        super().__init__(db)
        self._modified: dict[bytes, bytes | None] = {}
        self._size = 0
        self._on_close = on_close

    # -------------------------------------------------------------------------
    # Buffered Operations
    # -------------------------------------------------------------------------

    def get(self, key: bytes) -> bytes | None:
        if key in self._modified:
            return self._modified[key]
        return self._db.get(key)

    def has(self, key: bytes) -> bool:
        return self.get(key) is not None

    def put(self, key: bytes, value: bytes) -> None:
        self._record(bytes(key), bytes(value))

    def delete(self, key: bytes) -> None:
        self._record(bytes(key), None)

    def _record(self, key: bytes, value: bytes | None) -> None:
        previous = self._modified.get(key)
        if key in self._modified:
            self._size -= len(key) + (len(previous) if previous is not None else 0)
        self._modified[key] = value
        self._size += len(key) + (len(value) if value is not None else 0)

    def iterate(self, prefix: bytes = b"", start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        """
        Iterate over the merged view in key order.

        The buffer is snapshotted when iteration begins. Buffered deletions
        hide the underlying keys.
        """
        lower = prefix + start
        buffered = sorted(
            (k, v) for k, v in self._modified.items() if k.startswith(prefix) and k >= lower
        )
        yield from _merge(iter(buffered), self._db.iterate(prefix, start))

    def new_batch(self) -> BufferedBatch:
        """Batches write into the in-memory buffer."""
        return BufferedBatch(self._apply)

    def _apply(self, ops: list[tuple[bytes, bytes | None]]) -> None:
        for key, value in ops:
            self._record(key, value)

    # -------------------------------------------------------------------------
    # Flushing
    # -------------------------------------------------------------------------

    def not_flushed_size_est(self) -> int:
        """Approximate bytes held in the buffer."""
        return self._size

    def not_flushed_pairs(self) -> int:
        """Number of keys with buffered writes."""
        return len(self._modified)

    def flush(self) -> None:
        """Write the buffer to the underlying store in one batch."""
        if not self._modified:
            return
        batch = self._db.new_batch()
        for key, value in sorted(self._modified.items()):
            if value is None:
                batch.delete(key)
            else:
                batch.put(key, value)
        batch.write()
        self.drop_not_flushed()

    def drop_not_flushed(self) -> None:
        """Discard the buffer."""
        self._modified.clear()
        self._size = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying store. Unflushed writes are discarded."""
        if self._modified:
            logger.warning("Closing database with %d unflushed keys", len(self._modified))
            self.drop_not_flushed()
        self._db.close()
        if self._on_close is not None:
            self._on_close()

    def drop(self) -> None:
        self.drop_not_flushed()
        self._db.drop()
        if self._on_close is not None:
            self._on_close()


def _merge(
    buffered: Iterator[tuple[bytes, bytes | None]],
    stored: Iterator[tuple[bytes, bytes]],
) -> Iterator[tuple[bytes, bytes]]:
    """Merge two key-ordered streams; the buffered stream wins on equal keys."""
    b = next(buffered, None)
    s = next(stored, None)
    while b is not None or s is not None:
        if b is not None and (s is None or b[0] <= s[0]):
            if s is not None and b[0] == s[0]:
                s = next(stored, None)
            if b[1] is not None:
                yield b[0], b[1]
            b = next(buffered, None)
        elif s is not None:
            yield s
            s = next(stored, None)


def clean_flush_id(flush_id: bytes) -> bytes:
    """Reserved value recording a completed flush with `flush_id`."""
    return bytes([CLEAN_MARKER]) + flush_id


class SyncedPool:
    """
    Producer of Flushable wrappers flushed together.

    Every database opened through the pool takes part in its flushes and in
    the consistency check performed by `initialize`.
    """

    def __init__(self, producer: DBProducer, flush_id_key: bytes) -> None:
        self._producer = producer
        self._flush_id_key = flush_id_key
        self._wrappers: dict[str, Flushable] = {}

    def initialize(self, names: list[str], flush_id: bytes | None = None) -> bytes | None:
        """
        Open the existing databases and check that they were flushed together.

        Args:
            names: Databases that already exist.
            flush_id: Flush id found by a sibling pool, if any.

        Returns:
            The common flush id, or `flush_id` if there was nothing to check.

        Raises:
            TornWriteError: If a database is dirty, lacks its marker, or
                carries a different flush id.
        """
        for name in names:
            self.open_db(name)
        return self._check_synced(flush_id)

    def _check_synced(self, expected: bytes | None) -> bytes | None:
        for name, wrapper in sorted(self._wrappers.items()):
            mark = wrapper.underlying.get(self._flush_id_key)
            if mark is None:
                raise TornWriteError(f"database {name!r} has no flush marker")
            if mark[0] != CLEAN_MARKER:
                raise TornWriteError(f"database {name!r} is dirty")
            current = mark[1:]
            if expected is not None and current != expected:
                raise TornWriteError(
                    f"database {name!r} is not synced: flush id 0x{current.hex()}, "
                    f"expected 0x{expected.hex()}"
                )
            expected = current
        return expected

    def open_db(self, name: str) -> Flushable:
        """Open a database as part of the pool, reusing an open wrapper."""
        if name not in self._wrappers:
            self._wrappers[name] = Flushable(
                self._producer.open_db(name),
                on_close=lambda: self._wrappers.pop(name, None),
            )
        return self._wrappers[name]

    def names(self) -> list[str]:
        return self._producer.names()

    def not_flushed_size_est(self) -> int:
        """Approximate bytes buffered across the pool."""
        return sum(w.not_flushed_size_est() for w in self._wrappers.values())

    # -------------------------------------------------------------------------
    # Flush Protocol
    # -------------------------------------------------------------------------

    def mark_dirty(self) -> None:
        """Phase 1: flag every database as being flushed."""
        for wrapper in self._wrappers.values():
            previous = wrapper.underlying.get(self._flush_id_key) or b""
            wrapper.underlying.put(self._flush_id_key, bytes([DIRTY_MARKER]) + previous[1:])

    def flush_data(self) -> None:
        """Phase 2: write every buffer to disk."""
        for wrapper in self._wrappers.values():
            wrapper.flush()

    def mark_clean(self, flush_id: bytes) -> None:
        """Phase 3: flag every database as consistent at `flush_id`."""
        for wrapper in self._wrappers.values():
            wrapper.underlying.put(self._flush_id_key, clean_flush_id(flush_id))

    def flush(self, flush_id: bytes) -> None:
        """Run the three flush phases over this pool alone."""
        self.mark_dirty()
        self.flush_data()
        self.mark_clean(flush_id)

    def close(self) -> None:
        """Close every wrapper opened through the pool."""
        for wrapper in list(self._wrappers.values()):
            wrapper.close()
        self._wrappers.clear()


def write_clean_markers(producer: DBProducer, flush_id_key: bytes, flush_id: bytes) -> list[str]:
    """
    Mark every database of a producer clean at `flush_id`.

    Used after maintenance (migration) that writes directly, bypassing the
    pool's flush protocol.

    Returns:
        Names of the databases that were marked.
    """
    names = producer.names()
    for name in names:
        db = producer.open_db(name)
        try:
            db.put(flush_id_key, clean_flush_id(flush_id))
        finally:
            db.close()
        logger.info("Database set clean, name=%s", name)
    return names
