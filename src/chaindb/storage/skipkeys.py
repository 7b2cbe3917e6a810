"""
Hide reserved metadata keys from application iteration.

Reserved keys (flush id, table list) share one long random prefix. They stay
reachable through point reads and writes, so the metadata components can use
them, but iteration never yields them. Exports and table scans therefore
never see the reserved namespace.
"""

from __future__ import annotations

from collections.abc import Iterator

from .kv import DBProducer, KVStore, prefix_upper_bound
from .wrapper import StoreWrapper


class SkipKeysStore(StoreWrapper):
    """Store wrapper whose iteration skips every key under `skip_prefix`."""

    def __init__(self, db: KVStore, skip_prefix: bytes) -> None:
        if not skip_prefix:
            raise ValueError("skip prefix must be non-empty")
        super().__init__(db)
        self._skip = skip_prefix

    @property
    def skip_prefix(self) -> bytes:
        """Prefix of the hidden keys."""
        return self._skip

    def iterate(self, prefix: bytes = b"", start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        """
        Iterate over non-reserved keys.

        Reserved keys are contiguous in key order. On reaching the first one,
        iteration jumps past the whole reserved range instead of filtering it.
        """
        for key, value in self._db.iterate(prefix, start):
            if key.startswith(self._skip):
                break
            yield key, value
        else:
            return

        resume = prefix_upper_bound(self._skip)
        if resume is None or not resume.startswith(prefix):
            return
        yield from self._db.iterate(prefix, resume[len(prefix) :])


class SkipKeysProducer:
    """Producer wrapping every opened store in a SkipKeysStore."""

    def __init__(self, producer: DBProducer, skip_prefix: bytes) -> None:
        self._producer = producer
        self._skip = skip_prefix

    def open_db(self, name: str) -> SkipKeysStore:
        return SkipKeysStore(self._producer.open_db(name), self._skip)

    def names(self) -> list[str]:
        return self._producer.names()
