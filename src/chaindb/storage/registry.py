"""
Backend selection by type tag.

Routes name their backend with a short tag ("sqlite", "lmdb"). The registry
maps each tag to the producer class that implements it, so adding a backend
means adding one entry here.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Final

from .kv import DirectoryProducer
from .lmdbstore import LMDBProducer
from .sqlite import SQLiteProducer

BackendFactory = Callable[[Path], DirectoryProducer]
"""Builds a producer rooted at the given directory."""

SUPPORTED_BACKENDS: Final[dict[str, BackendFactory]] = {
    "sqlite": SQLiteProducer,
    "lmdb": LMDBProducer,
}
"""Every backend type tag understood by the node."""


def supported_dbs(root: Path) -> dict[str, DirectoryProducer]:
    """
    Build one producer per supported backend under `root`.

    Each backend owns the sub-directory named after its type tag,
    e.g. `<root>/sqlite/<db-name>`.
    """
    return {typ: factory(root / typ) for typ, factory in SUPPORTED_BACKENDS.items()}
