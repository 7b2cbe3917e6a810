"""Genesis configuration loader.

The genesis is the content a node writes into an empty data directory. Its
id is stored alongside and compared on every later start, so a node never
runs on top of another chain's data.

The expected YAML format:

    GENESIS_ID: "0x5d3f1c0e8a...b2"
    DATA:
      evm:
        "0x01": "0xdeadbeef"
      gossip:
        "0x6c617374": "0x00"

Hex strings should be quoted. YAML reads an unquoted `0x...` as an integer,
which is accepted for the id (its width is fixed) but not for keys and
values, whose leading zero bytes would be lost.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Final

import yaml
from pydantic import Field, ValidationError, field_validator

from chaindb.types import ConfigurationError, StrictBaseModel

GENESIS_ID_LENGTH: Final = 32
"""Size of a genesis id in bytes."""


def _hex_to_bytes(value: Any, length: int | None = None) -> bytes:
    """
    Decode a `0x`-prefixed (or bare) hex string.

    Integers are accepted only when `length` fixes the width.
    """
    if isinstance(value, bytes):
        data = value
    elif isinstance(value, int) and not isinstance(value, bool) and length is not None:
        data = value.to_bytes(length, "big")
    elif isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        data = bytes.fromhex(text)
    else:
        raise ValueError(f"expected a hex string, got {type(value).__name__}")

    if length is not None and len(data) != length:
        raise ValueError(f"expected {length} bytes, got {len(data)}")
    return data


class GenesisConfig(StrictBaseModel):
    """
    Content written into an empty data directory on first launch.

    Field names use UPPERCASE to match the YAML convention.
    Pydantic aliases map them to snake_case Python attributes.
    """

    genesis_id: bytes = Field(alias="GENESIS_ID")
    """
    Identifier of the chain.

    Stored on first launch and compared on every later start.
    """

    data: dict[str, dict[bytes, bytes]] = Field(default_factory=dict, alias="DATA")
    """Initial key/value pairs, grouped by logical request."""

    @field_validator("genesis_id", mode="before")
    @classmethod
    def parse_genesis_id(cls, v: Any) -> bytes:
        return _hex_to_bytes(v, GENESIS_ID_LENGTH)

    @field_validator("data", mode="before")
    @classmethod
    def parse_data(cls, v: Any) -> dict[str, dict[bytes, bytes]]:
        """Convert the nested hex mappings to bytes."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError(f"DATA must be a mapping, got {type(v).__name__}")

        result: dict[str, dict[bytes, bytes]] = {}
        for req, pairs in v.items():
            if not isinstance(pairs, dict):
                raise ValueError(f"DATA of {req!r} must be a mapping of hex key to hex value")
            result[str(req)] = {_hex_to_bytes(k): _hex_to_bytes(val) for k, val in pairs.items()}
        return result

    def num_pairs(self) -> int:
        """Total number of key/value pairs in the genesis."""
        return sum(len(pairs) for pairs in self.data.values())

    @classmethod
    def from_yaml_file(cls, path: Path | str) -> GenesisConfig:
        """
        Load configuration from a YAML file.

        Raises:
            ConfigurationError: If the file cannot be read or is invalid.
        """
        path = Path(path)
        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot load genesis {path}: {e}") from e
        return cls._validate(data)

    @classmethod
    def from_yaml(cls, content: str) -> GenesisConfig:
        """
        Load configuration from a YAML string.

        Useful for testing or programmatic config generation.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"cannot parse genesis: {e}") from e
        return cls._validate(data)

    @classmethod
    def _validate(cls, data: Any) -> GenesisConfig:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"invalid genesis: {e}") from e
