"""
Abstract key-value interfaces for physical databases.

Defines the Protocols that every storage backend and wrapper must follow.
Uses structural subtyping, so backends are plain classes selected by a type
tag rather than subclasses of a common base.

Key Space
---------
Keys and values are raw bytes. Iteration is ordered byte-lexicographically,
which is also the order of big-endian encoded integers.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Protocol


class Batch(Protocol):
    """
    Buffered writes applied atomically on `write`.

    Deletes are recorded as writes of `None`.
    """

    def put(self, key: bytes, value: bytes) -> None:
        """Buffer an insert or overwrite."""
        ...

    def delete(self, key: bytes) -> None:
        """Buffer a deletion."""
        ...

    def value_size(self) -> int:
        """Estimate of the bytes buffered so far."""
        ...

    def write(self) -> None:
        """Commit every buffered operation in one transaction."""
        ...

    def reset(self) -> None:
        """Discard every buffered operation."""
        ...


class KVStore(Protocol):
    """
    Protocol for one physical database instance.

    All implementations must provide these methods.
    """

    # -------------------------------------------------------------------------
    # Point Operations
    # -------------------------------------------------------------------------

    def get(self, key: bytes) -> bytes | None:
        """
        Retrieve the value stored under a key.

        Returns:
            The value, or None if the key is absent.
        """
        ...

    def has(self, key: bytes) -> bool:
        """Check if a key exists."""
        ...

    def put(self, key: bytes, value: bytes) -> None:
        """Store a value, overwriting any previous one."""
        ...

    def delete(self, key: bytes) -> None:
        """Remove a key. Removing an absent key is not an error."""
        ...

    # -------------------------------------------------------------------------
    # Range Operations
    # -------------------------------------------------------------------------

    def iterate(self, prefix: bytes = b"", start: bytes = b"") -> Iterator[tuple[bytes, bytes]]:
        """
        Iterate over key/value pairs in byte-lexicographic key order.

        Args:
            prefix: Only keys beginning with this prefix are yielded.
            start: Position within the prefix to begin at (prefix + start).

        Returns:
            Iterator of full (key, value) pairs.
        """
        ...

    def new_batch(self) -> Batch:
        """Create a batch of buffered writes against this store."""
        ...

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def stat(self, prop: str) -> str:
        """Return a human-readable statistic of the store."""
        ...

    def compact(self, start: bytes | None, limit: bytes | None) -> None:
        """Compact the key range [start, limit). None means unbounded."""
        ...

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release resources held by the store."""
        ...

    def drop(self) -> None:
        """Close the store and irreversibly delete its data."""
        ...


class DBProducer(Protocol):
    """Opens, creates and enumerates physical databases of one backend."""

    def open_db(self, name: str) -> KVStore:
        """Open the named database, creating it when missing."""
        ...

    def names(self) -> list[str]:
        """Names of the databases that currently exist, sorted."""
        ...


class DirectoryProducer(DBProducer, Protocol):
    """
    A producer whose databases are directories under one root.

    Migrations rename and delete such directories directly.
    """

    @property
    def root(self) -> Path:
        """Directory holding one sub-directory per database."""
        ...

    def path_of(self, name: str) -> Path:
        """Directory of the named database."""
        ...


def prefix_upper_bound(prefix: bytes) -> bytes | None:
    """
    Smallest key greater than every key starting with `prefix`.

    Returns:
        The exclusive upper bound, or None if the range is unbounded
        (empty prefix or a prefix made only of 0xff bytes).
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


def check_db_name(name: str) -> str:
    """
    Validate a physical database name.

    Names become directory names, so path separators and relative
    components are rejected.

    Raises:
        ValueError: If the name cannot be used as a single directory name.
    """
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise ValueError(f"invalid database name: {name!r}")
    return name
