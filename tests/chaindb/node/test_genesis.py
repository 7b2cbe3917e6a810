"""Tests for loading the genesis configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaindb.node import GenesisConfig
from chaindb.types import ConfigurationError

GENESIS_ID = "0x" + "5d" * 32

SAMPLE_YAML = f"""
GENESIS_ID: "{GENESIS_ID}"
DATA:
  evm:
    "0x01": "0xdeadbeef"
    "0x0002": "00"
  gossip:
    "0x6c617374": ""
"""


class TestGenesisConfig:
    """Tests for the genesis model."""

    def test_from_yaml(self) -> None:
        """Hex ids, keys and values are decoded to bytes."""
        genesis = GenesisConfig.from_yaml(SAMPLE_YAML)

        assert genesis.genesis_id == b"\x5d" * 32
        assert genesis.data == {
            "evm": {b"\x01": b"\xde\xad\xbe\xef", b"\x00\x02": b"\x00"},
            "gossip": {b"last": b""},
        }
        assert genesis.num_pairs() == 3

    def test_from_yaml_file(self, tmp_path: Path) -> None:
        """Files and strings are parsed the same way."""
        path = tmp_path / "genesis.yaml"
        path.write_text(SAMPLE_YAML)
        assert GenesisConfig.from_yaml_file(path) == GenesisConfig.from_yaml(SAMPLE_YAML)

    def test_integer_id(self) -> None:
        """An unquoted id is read by YAML as an integer and padded to 32 bytes."""
        genesis = GenesisConfig.from_yaml("GENESIS_ID: 0x01\n")
        assert genesis.genesis_id == b"\x00" * 31 + b"\x01"
        assert genesis.data == {}

    def test_python_names(self) -> None:
        """Snake case names work when building the model in code."""
        genesis = GenesisConfig(genesis_id=b"\x11" * 32, data={"evm": {b"k": b"v"}})
        assert genesis.num_pairs() == 1

    def test_empty_data_section(self) -> None:
        """A DATA key without content means no pairs."""
        genesis = GenesisConfig.from_yaml(f'GENESIS_ID: "{GENESIS_ID}"\nDATA:\n')
        assert genesis.data == {}

    @pytest.mark.parametrize(
        "content",
        [
            'GENESIS_ID: "0x1234"\n',
            'GENESIS_ID: "0xzz"\n',
            "DATA: {}\n",
            f'GENESIS_ID: "{GENESIS_ID}"\nDATA:\n  evm:\n    0x01: "0x02"\n',
            f'GENESIS_ID: "{GENESIS_ID}"\nDATA:\n  evm: [1, 2]\n',
            f'GENESIS_ID: "{GENESIS_ID}"\nEXTRA: 1\n',
            "- not a mapping\n",
        ],
    )
    def test_invalid(self, content: str) -> None:
        """Bad widths, bad hex, unquoted keys and unknown fields are rejected."""
        with pytest.raises(ConfigurationError):
            GenesisConfig.from_yaml(content)

    def test_malformed_yaml(self) -> None:
        """A YAML syntax error is a configuration error."""
        with pytest.raises(ConfigurationError, match="cannot parse"):
            GenesisConfig.from_yaml("GENESIS_ID: [unclosed\n")

    def test_missing_file(self, tmp_path: Path) -> None:
        """An unreadable file is a configuration error."""
        with pytest.raises(ConfigurationError, match="cannot load"):
            GenesisConfig.from_yaml_file(tmp_path / "absent.yaml")
