"""Shared fixtures for the chain database tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from chaindb.config import DataDirLayout, MetadataKeys
from chaindb.routing import MultiProducer, RoutingConfig
from chaindb.storage import DirectoryProducer, supported_dbs, write_clean_markers

Data = dict[str, dict[bytes, bytes]]
"""Key/value pairs grouped by logical request."""


@pytest.fixture
def keys() -> MetadataKeys:
    """Reserved keys with a short prefix, easy to spot in failures."""
    return MetadataKeys(prefix=b"\xfe\xedmeta")


@pytest.fixture
def layout(tmp_path: Path) -> DataDirLayout:
    """Fresh node data directory."""
    return DataDirLayout(tmp_path / "node")


@pytest.fixture
def live(layout: DataDirLayout) -> dict[str, DirectoryProducer]:
    """Producers of the live tree."""
    return supported_dbs(layout.chaindata)


@pytest.fixture
def populate(
    live: dict[str, DirectoryProducer], keys: MetadataKeys
) -> Callable[[RoutingConfig, Data], None]:
    """Write data through routing and mark every database clean."""

    def _populate(routing: RoutingConfig, data: Data) -> None:
        multi = MultiProducer(live, routing, keys)
        try:
            for req, pairs in data.items():
                table = multi.open_db(req)
                for key, value in pairs.items():
                    table.put(key, value)
        finally:
            multi.close()
        for producer in live.values():
            write_clean_markers(producer, keys.flush_id_key, b"\x00" * 8)

    return _populate


@pytest.fixture
def read_all(
    live: dict[str, DirectoryProducer], keys: MetadataKeys
) -> Callable[[RoutingConfig, list[str]], Data]:
    """Read back every pair of the given requests through routing."""

    def _read(routing: RoutingConfig, reqs: list[str]) -> Data:
        multi = MultiProducer(live, routing, keys)
        try:
            multi.verify()
            return {req: dict(multi.open_db(req).iterate()) for req in reqs}
        finally:
            multi.close()

    return _read
