"""
Sorted write buffer shared by the backend batches.

Operations are kept keyed and ordered, so the last write to a key wins and
commits touch keys in ascending order, the cheapest order for B-tree backends.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

ITEM_OVERHEAD = 16
"""Approximate per-entry bookkeeping cost added to the size estimate."""

IDEAL_BATCH_SIZE = 100 * 1024
"""Size estimate above which bulk writers commit and start a new batch."""


class BufferedBatch:
    """
    Batch buffering puts and deletes until `write`.

    The backend supplies `apply`, which receives the operations sorted by key
    (value None meaning delete) and must commit them in one transaction.
    """

    def __init__(self, apply: Callable[[list[tuple[bytes, bytes | None]]], None]) -> None:
        self._apply = apply
        self._ops: dict[bytes, bytes | None] = {}
        self._size = 0

    def put(self, key: bytes, value: bytes) -> None:
        """Buffer an insert or overwrite."""
        self._record(bytes(key), bytes(value))

    def delete(self, key: bytes) -> None:
        """Buffer a deletion."""
        self._record(bytes(key), None)

    def _record(self, key: bytes, value: bytes | None) -> None:
        if key in self._ops:
            self._size -= _cost(key, self._ops[key])
        self._ops[key] = value
        self._size += _cost(key, value)

    def value_size(self) -> int:
        """Estimate of the bytes buffered so far."""
        return self._size

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[tuple[bytes, bytes | None]]:
        return iter(sorted(self._ops.items()))

    def write(self) -> None:
        """Commit the buffered operations and clear the buffer."""
        if self._ops:
            self._apply(list(self))
        self.reset()

    def reset(self) -> None:
        """Discard every buffered operation."""
        self._ops.clear()
        self._size = 0


def _cost(key: bytes, value: bytes | None) -> int:
    return ITEM_OVERHEAD + len(key) + (len(value) if value is not None else 0)
