"""Tests for the table-list metadata stored in every database."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaindb.routing import TableRecord, read_tables_list, write_tables_list
from chaindb.routing.tables import decode_tables_list, encode_tables_list
from chaindb.storage import SQLiteStore
from chaindb.types import TableListDecodeError
from chaindb.types.rlp import encode_rlp

TABLES_KEY = b"\x80meta\x0d"


class TestEncoding:
    """Tests for the RLP list of pairs."""

    def test_wire_format(self) -> None:
        """Records are [req, table] byte-string pairs."""
        encoded = encode_tables_list([TableRecord("evm", "")])
        assert encoded == encode_rlp([[b"evm", b""]])

    def test_canonical_order(self) -> None:
        """Input order does not change the encoding."""
        a, b = TableRecord("evm", ""), TableRecord("gossip", "G")
        assert encode_tables_list([a, b]) == encode_tables_list([b, a])
        assert decode_tables_list(encode_tables_list([b, a])) == [a, b]

    def test_empty_list(self) -> None:
        """A database may hold no requests."""
        assert decode_tables_list(encode_tables_list([])) == []

    @pytest.mark.parametrize(
        "data",
        [
            b"\xff",
            encode_rlp(b"not a list"),
            encode_rlp([[b"only-req"]]),
            encode_rlp([[b"req", [b"nested"]]]),
            encode_rlp([[b"\xff\xfe", b""]]),
        ],
    )
    def test_malformed(self, data: bytes) -> None:
        """Anything but a list of text pairs is rejected."""
        with pytest.raises(TableListDecodeError):
            decode_tables_list(data)


class TestStorage:
    """Tests for reading and writing the list in a database."""

    def test_missing_list_is_empty(self, tmp_path: Path) -> None:
        """A database never written to holds no requests."""
        db = SQLiteStore(tmp_path / "db")
        assert read_tables_list(db, TABLES_KEY) == []
        db.close()

    def test_write_replaces(self, tmp_path: Path) -> None:
        """Writing replaces the whole list."""
        db = SQLiteStore(tmp_path / "db")
        write_tables_list(db, TABLES_KEY, [TableRecord("a", ""), TableRecord("b", "B")])
        write_tables_list(db, TABLES_KEY, [TableRecord("c", "C")])
        assert read_tables_list(db, TABLES_KEY) == [TableRecord("c", "C")]
        db.close()
