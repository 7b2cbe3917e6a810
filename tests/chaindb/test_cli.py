"""Tests for the maintenance command line."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from chaindb.__main__ import EXIT_FAILURE, EXIT_OK, build_parser, main
from chaindb.config import DEFAULT_METADATA_KEYS, DataDirLayout
from chaindb.routing import MultiProducer, RoutingConfig
from chaindb.storage import supported_dbs, write_clean_markers

ROUTING_YAML = """\
"":
  type: sqlite
evm:
  type: lmdb
  name: state
gossip:
  type: sqlite
  name: logs
  table: G
logs:
  type: sqlite
  name: logs
  table: L
"""


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """Remove the handlers each CLI run installs on the root logger."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def datadir(tmp_path: Path) -> Path:
    """Data directory populated with the default routing."""
    layout = DataDirLayout(tmp_path / "node")
    live = supported_dbs(layout.chaindata)
    multi = MultiProducer(live, RoutingConfig(), DEFAULT_METADATA_KEYS)
    try:
        for req in ["evm", "gossip", "logs"]:
            table = multi.open_db(req)
            for i in range(5):
                table.put(f"{req}-{i}".encode(), b"v")
    finally:
        multi.close()
    for producer in live.values():
        write_clean_markers(producer, DEFAULT_METADATA_KEYS.flush_id_key, b"\x00" * 8)
    return layout.datadir


@pytest.fixture
def routing_file(tmp_path: Path) -> Path:
    """Routing that merges gossip and logs and moves evm to lmdb."""
    path = tmp_path / "routing.yaml"
    path.write_text(ROUTING_YAML)
    return path


def run(datadir: Path, command: str, routing: Path | None = None) -> int:
    """Invoke the CLI like the shell would."""
    argv = ["--datadir", str(datadir), "--no-color", command]
    if routing is not None:
        argv[2:2] = ["--routing", str(routing)]
    return main(argv)


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self) -> None:
        """Routing is optional, the command is positional."""
        args = build_parser().parse_args(["--datadir", "/data", "verify"])
        assert args.datadir == Path("/data")
        assert args.routing is None
        assert args.command == "verify"
        assert not args.verbose

    def test_unknown_command(self) -> None:
        """Only the listed commands are accepted."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--datadir", "/data", "repair"])

    def test_datadir_required(self) -> None:
        """There is no default data directory."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["verify"])


class TestCommands:
    """Tests for the commands end to end."""

    def test_verify_matching_layout(self, datadir: Path) -> None:
        """The routing used to write verifies."""
        assert run(datadir, "verify") == EXIT_OK

    def test_verify_reports_mismatch(
        self, datadir: Path, routing_file: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A new routing fails verification until migrated."""
        assert run(datadir, "verify", routing_file) == EXIT_FAILURE
        assert "Try to use 'migrate'" in caplog.text

    def test_migrate_then_verify(
        self, datadir: Path, routing_file: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """After migrating, the new routing verifies and the old one does not."""
        with caplog.at_level(logging.INFO):
            assert run(datadir, "migrate", routing_file) == EXIT_OK
        assert "DB migration is complete" in caplog.text

        assert run(datadir, "verify", routing_file) == EXIT_OK
        assert run(datadir, "verify") == EXIT_FAILURE

    def test_migrate_bad_routing(self, datadir: Path, tmp_path: Path) -> None:
        """A contradictory routing fails before any change."""
        path = tmp_path / "bad.yaml"
        path.write_text(
            '"":\n  type: sqlite\n'
            "gossip:\n  type: sqlite\n  name: shared\n  table: A\n"
            "logs:\n  type: sqlite\n  name: shared\n  table: AB\n"
        )
        assert run(datadir, "migrate", path) == EXIT_FAILURE
        assert run(datadir, "verify") == EXIT_OK

    def test_missing_routing_file(self, datadir: Path, tmp_path: Path) -> None:
        """An unreadable routing file is reported, not raised."""
        assert run(datadir, "verify", tmp_path / "absent.yaml") == EXIT_FAILURE

    def test_compact(self, datadir: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Stats are printed before and after compacting each database."""
        assert run(datadir, "compact") == EXIT_OK
        out = capsys.readouterr().out
        assert out.count("rows=") == 6
