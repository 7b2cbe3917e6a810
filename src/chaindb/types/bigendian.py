"""Fixed-width big-endian integer encoding used by reserved keys."""

from __future__ import annotations

UINT64_SIZE = 8
"""Encoded width of an unsigned 64-bit integer."""


def uint64_to_bytes(value: int) -> bytes:
    """
    Encode an unsigned 64-bit integer as 8 big-endian bytes.

    Big-endian keeps byte-lexicographic order equal to numeric order.

    Raises:
        ValueError: If the value does not fit in 64 bits.
    """
    if not 0 <= value < 1 << 64:
        raise ValueError(f"{value} is out of range for uint64")
    return value.to_bytes(UINT64_SIZE, "big")


def bytes_to_uint64(data: bytes) -> int:
    """
    Decode 8 big-endian bytes into an unsigned integer.

    Raises:
        ValueError: If the input is not exactly 8 bytes long.
    """
    if len(data) != UINT64_SIZE:
        raise ValueError(f"uint64 requires {UINT64_SIZE} bytes, got {len(data)}")
    return int.from_bytes(data, "big")
