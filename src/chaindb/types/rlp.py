"""
Recursive Length Prefix (RLP) codec.

Reserved metadata values (the per-DB table list) are stored as RLP so the
format stays compatible with the rest of the Ethereum tooling.

Only the two RLP item kinds are supported:

- byte strings, prefixed by `0x80 + len` (short) or `0xb7 + len(len)` (long),
  except a single byte below `0x80` which encodes as itself;
- lists, prefixed by `0xc0 + len` (short) or `0xf7 + len(len)` (long).

Decoding is strict: non-canonical length encodings and trailing bytes are
rejected.
"""

from __future__ import annotations

from typing import TypeAlias

RLPItem: TypeAlias = bytes | list["RLPItem"]
"""Either a byte string or a (possibly nested) list of RLP items."""

STRING_OFFSET = 0x80
"""Base prefix for byte strings."""

LIST_OFFSET = 0xC0
"""Base prefix for lists."""

SHORT_PAYLOAD_MAX = 55
"""Largest payload length that fits into the prefix byte itself."""


class RLPDecodingError(ValueError):
    """Error during RLP decoding."""


def encode_rlp(item: RLPItem) -> bytes:
    """
    Encode an item using RLP.

    Raises:
        TypeError: If the item is neither bytes nor a list.
    """
    if isinstance(item, bytes):
        if len(item) == 1 and item[0] < STRING_OFFSET:
            return item
        return _header(len(item), STRING_OFFSET) + item
    if isinstance(item, list):
        payload = b"".join(encode_rlp(child) for child in item)
        return _header(len(payload), LIST_OFFSET) + payload
    raise TypeError(f"Cannot RLP encode type: {type(item).__name__}")


def _header(length: int, offset: int) -> bytes:
    if length <= SHORT_PAYLOAD_MAX:
        return bytes([offset + length])
    length_bytes = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([offset + SHORT_PAYLOAD_MAX + len(length_bytes)]) + length_bytes


def decode_rlp(data: bytes) -> RLPItem:
    """
    Decode RLP-encoded bytes.

    Raises:
        RLPDecodingError: If data is empty, malformed or has trailing bytes.
    """
    if not data:
        raise RLPDecodingError("Empty RLP data")
    item, end = _decode_at(data, 0)
    if end != len(data):
        raise RLPDecodingError(f"Trailing data: decoded {end} of {len(data)} bytes")
    return item


def _decode_at(data: bytes, offset: int) -> tuple[RLPItem, int]:
    """Decode one item at `offset`, returning it with the offset just past it."""
    is_list, start, end = _read_header(data, offset)
    if not is_list:
        return data[start:end], end

    items: list[RLPItem] = []
    cursor = start
    while cursor < end:
        item, cursor = _decode_at(data, cursor)
        items.append(item)
    if cursor != end:
        raise RLPDecodingError("List payload length mismatch")
    return items, end


def _read_header(data: bytes, offset: int) -> tuple[bool, int, int]:
    """Parse the prefix at `offset` into (is_list, payload_start, payload_end)."""
    if offset >= len(data):
        raise RLPDecodingError("Unexpected end of data")
    prefix = data[offset]

    if prefix < STRING_OFFSET:
        return False, offset, offset + 1

    is_list = prefix >= LIST_OFFSET
    base = LIST_OFFSET if is_list else STRING_OFFSET
    short = prefix - base

    if short <= SHORT_PAYLOAD_MAX:
        start, length = offset + 1, short
        if not is_list and length == 1 and start < len(data) and data[start] < STRING_OFFSET:
            raise RLPDecodingError("Non-canonical: single byte encoded as string")
    else:
        len_of_len = short - SHORT_PAYLOAD_MAX
        start = offset + 1 + len_of_len
        _check_bounds(data, start)
        length_bytes = data[offset + 1 : start]
        if length_bytes[0] == 0:
            raise RLPDecodingError("Non-canonical: leading zeros in length encoding")
        length = int.from_bytes(length_bytes, "big")
        if length <= SHORT_PAYLOAD_MAX:
            raise RLPDecodingError("Non-canonical: long encoding for short payload")

    _check_bounds(data, start + length)
    return is_list, start, start + length


def _check_bounds(data: bytes, end: int) -> None:
    if end > len(data):
        raise RLPDecodingError(f"Data too short: need {end}, have {len(data)}")
