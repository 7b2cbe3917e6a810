"""
Table-list metadata stored inside every physical database.

Each physical database records which logical requests it holds and under
which table prefix. The union of these lists over all databases is the
layout currently on disk, which is what a migration starts from.

Serialized as an RLP list of `[request, table]` byte-string pairs.
"""

from __future__ import annotations

from dataclasses import dataclass

from chaindb.storage import KVStore
from chaindb.types import TableListDecodeError
from chaindb.types.rlp import RLPDecodingError, decode_rlp, encode_rlp


@dataclass(frozen=True, slots=True, order=True)
class TableRecord:
    """Placement of one request within its containing database."""

    req: str
    """Logical request name."""

    table: str
    """Table prefix of the request."""


def encode_tables_list(records: list[TableRecord]) -> bytes:
    """Serialize records in a canonical (sorted) order."""
    return encode_rlp([[r.req.encode(), r.table.encode()] for r in sorted(records)])


def decode_tables_list(data: bytes) -> list[TableRecord]:
    """
    Deserialize a table list.

    Raises:
        TableListDecodeError: If the bytes are not a list of pairs.
    """
    try:
        items = decode_rlp(data)
    except RLPDecodingError as e:
        raise TableListDecodeError(f"malformed table list: {e}") from e
    if not isinstance(items, list):
        raise TableListDecodeError("malformed table list: expected a list")

    records = []
    for i, item in enumerate(items):
        if not isinstance(item, list) or len(item) != 2:
            raise TableListDecodeError(f"malformed table list: entry {i} is not a pair")
        req, table = item
        if not isinstance(req, bytes) or not isinstance(table, bytes):
            raise TableListDecodeError(f"malformed table list: entry {i} is nested")
        try:
            records.append(TableRecord(req=req.decode(), table=table.decode()))
        except UnicodeDecodeError as e:
            raise TableListDecodeError(f"malformed table list: entry {i}: {e}") from e
    return records


def read_tables_list(db: KVStore, tables_key: bytes) -> list[TableRecord]:
    """Read the records of a database. A missing list means no records."""
    data = db.get(tables_key)
    if data is None:
        return []
    return decode_tables_list(data)


def write_tables_list(db: KVStore, tables_key: bytes, records: list[TableRecord]) -> None:
    """Replace the records of a database."""
    db.put(tables_key, encode_tables_list(records))
