"""
Global configuration for the chain database layer.

Holds the data-directory layout and the reserved metadata keys.
Both are immutable values passed to the components that need them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

CHAINDATA_DIR: Final = "chaindata"
"""Directory holding the live physical databases, one sub-tree per backend type."""

STAGING_DIR: Final = "tmp"
"""Directory holding databases staged by a rebuild migration."""

REBUILD_JOURNAL_FILE: Final = "rebuild-journal.json"
"""File name of the rebuild journal inside the staging directory."""

FLUSH_ID_SUFFIX: Final = 0x0C
"""Last byte of the flush-id key."""

TABLES_SUFFIX: Final = 0x0D
"""Last byte of the table-list key."""

DEFAULT_METADATA_PREFIX: Final = bytes.fromhex(
    "0068c2927bf842c3e9e2f1364494a33a752db334b9a819534bc9f17d2c3b4e59"
    "70008ff519d35a86f29fcaa5aae706b75dee871f65f174fcea1747f2915fc921"
    "58f6bfbf5eb79f65d16225738594bffb"
)
"""
Long random prefix of every reserved key.

Chosen at random once, so application keys never collide with it in practice.
"""


@dataclass(frozen=True, slots=True)
class MetadataKeys:
    """
    Reserved keys present in every physical database.

    All reserved keys share `prefix`, which is hidden from application
    iteration by the skip-keys wrapper.
    """

    prefix: bytes = DEFAULT_METADATA_PREFIX
    """Common prefix of all reserved keys."""

    flush_id_key: bytes = field(init=False)
    """Key of the clean/dirty marker followed by the flush id."""

    tables_key: bytes = field(init=False)
    """Key of the serialized table list."""

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("metadata prefix must be non-empty")
        # Frozen dataclass: derived fields are assigned through object.__setattr__.
        object.__setattr__(self, "flush_id_key", self.prefix + bytes([FLUSH_ID_SUFFIX]))
        object.__setattr__(self, "tables_key", self.prefix + bytes([TABLES_SUFFIX]))


DEFAULT_METADATA_KEYS: Final = MetadataKeys()
"""Reserved keys used by nodes in production."""


@dataclass(frozen=True, slots=True)
class DataDirLayout:
    """
    Paths derived from a node data directory.

    Layout::

        <datadir>/chaindata/<backend-type>/<db-name>   live databases
        <datadir>/tmp/<backend-type>/<db-name>         staged databases
        <datadir>/tmp/rebuild-journal.json             pending rebuild
    """

    datadir: Path
    """Root data directory of the node."""

    @property
    def chaindata(self) -> Path:
        """Root of the live database tree."""
        return self.datadir / CHAINDATA_DIR

    @property
    def staging(self) -> Path:
        """Root of the staging tree used during rebuild migrations."""
        return self.datadir / STAGING_DIR

    @property
    def journal(self) -> Path:
        """Path of the rebuild journal."""
        return self.staging / REBUILD_JOURNAL_FILE
