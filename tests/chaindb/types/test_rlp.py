"""Tests for the RLP codec used by reserved metadata values."""

from __future__ import annotations

import pytest

from chaindb.types.rlp import RLPDecodingError, RLPItem, decode_rlp, encode_rlp


class TestEncode:
    """Tests for encoding byte strings and lists."""

    def test_empty_string(self) -> None:
        """Empty string encodes to 0x80."""
        assert encode_rlp(b"") == bytes.fromhex("80")

    @pytest.mark.parametrize("byte_val", [0x00, 0x01, 0x7F])
    def test_single_byte_encodes_as_itself(self, byte_val: int) -> None:
        """Single bytes below 0x80 carry no prefix."""
        assert encode_rlp(bytes([byte_val])) == bytes([byte_val])

    def test_single_byte_0x80_has_prefix(self) -> None:
        """A single byte of 0x80 or more is a one-byte string."""
        assert encode_rlp(b"\x80") == bytes.fromhex("8180")

    def test_short_string(self) -> None:
        """'dog' encodes with prefix 0x83."""
        assert encode_rlp(b"dog") == bytes.fromhex("83646f67")

    def test_long_string(self) -> None:
        """A 56-byte string switches to the long form with one length byte."""
        data = b"a" * 56
        assert encode_rlp(data) == bytes.fromhex("b838") + data

    def test_empty_list(self) -> None:
        """Empty list encodes to 0xc0."""
        assert encode_rlp([]) == bytes.fromhex("c0")

    def test_list_of_strings(self) -> None:
        """['cat', 'dog'] is the textbook example."""
        assert encode_rlp([b"cat", b"dog"]) == bytes.fromhex("c88363617483646f67")

    def test_nested_lists(self) -> None:
        """The set-theoretic representation of three."""
        item: RLPItem = [[], [[]], [[], [[]]]]
        assert encode_rlp(item) == bytes.fromhex("c7c0c1c0c3c0c1c0")

    def test_rejects_other_types(self) -> None:
        """Only bytes and lists are encodable."""
        with pytest.raises(TypeError):
            encode_rlp("text")  # type: ignore[arg-type]


class TestDecode:
    """Tests for strict decoding."""

    @pytest.mark.parametrize(
        "item",
        [
            b"",
            b"\x05",
            b"dog",
            b"x" * 1024,
            [],
            [b"req", b"table"],
            [[b"a", b""], [b"b", b"G"]],
        ],
    )
    def test_decodes_what_was_encoded(self, item: RLPItem) -> None:
        """Decoding inverts encoding."""
        assert decode_rlp(encode_rlp(item)) == item

    def test_empty_input(self) -> None:
        """No bytes is not an item."""
        with pytest.raises(RLPDecodingError, match="Empty"):
            decode_rlp(b"")

    def test_trailing_bytes(self) -> None:
        """Bytes after the first item are rejected."""
        with pytest.raises(RLPDecodingError, match="Trailing"):
            decode_rlp(bytes.fromhex("83646f6700"))

    def test_truncated_payload(self) -> None:
        """A prefix announcing more bytes than present is rejected."""
        with pytest.raises(RLPDecodingError, match="too short"):
            decode_rlp(bytes.fromhex("83646f"))

    def test_non_canonical_single_byte(self) -> None:
        """A byte below 0x80 must not be wrapped in a string prefix."""
        with pytest.raises(RLPDecodingError, match="Non-canonical"):
            decode_rlp(bytes.fromhex("8105"))

    def test_non_canonical_long_form(self) -> None:
        """The long form is only valid above 55 bytes."""
        with pytest.raises(RLPDecodingError, match="Non-canonical"):
            decode_rlp(bytes.fromhex("b803") + b"dog")

    def test_decoding_error_is_value_error(self) -> None:
        """Callers catching ValueError also see decoding errors."""
        assert issubclass(RLPDecodingError, ValueError)
