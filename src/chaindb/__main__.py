"""
Chain database maintenance CLI entry point.

Inspect and maintain the databases of a node data directory.

Usage::

    python -m chaindb --datadir ./node migrate
    python -m chaindb --datadir ./node --routing routing.yaml migrate
    python -m chaindb --datadir ./node verify
    python -m chaindb --datadir ./node compact

Commands:
    migrate   Move every stored request to the placement routing asks for
    verify    Check that the stored layout matches routing
    compact   Compact every database under chaindata

Options:
    --datadir     Node data directory (required)
    --routing     Path to routing YAML file (default: every request in its own sqlite DB)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from chaindb.config import DEFAULT_METADATA_KEYS, DataDirLayout
from chaindb.migration import migrate
from chaindb.node import check_staging
from chaindb.routing import MultiProducer, RoutingConfig
from chaindb.storage import SkipKeysProducer, supported_dbs
from chaindb.types import ChainDBError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class ColoredFormatter(logging.Formatter):
    """Logging formatter with ANSI colors for better readability."""

    # ANSI color codes
    GREY = "\x1b[38;5;244m"
    BLUE = "\x1b[38;5;39m"
    GREEN = "\x1b[38;5;40m"
    YELLOW = "\x1b[38;5;220m"
    RED = "\x1b[38;5;196m"
    BOLD_RED = "\x1b[38;5;196;1m"
    CYAN = "\x1b[38;5;51m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)

        timestamp = self.formatTime(record, self.datefmt)
        colored_time = f"{self.CYAN}{timestamp}{self.RESET}"
        levelname = f"{color}{record.levelname:8}{self.RESET}"
        name = f"{self.BLUE}{record.name}{self.RESET}"

        return f"{colored_time} {levelname} {name}: {record.getMessage()}"


def setup_logging(verbose: bool = False, no_color: bool = False) -> None:
    """Configure logging for the CLI with optional colors."""
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if no_color:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = ColoredFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def cmd_migrate(layout: DataDirLayout, routing: RoutingConfig) -> int:
    """Migrate the data directory to the routing config."""
    report = migrate(layout, routing)
    for component in report.components:
        logger.info(
            "Migrated component, strategy=%s reqs=%s keys=%d",
            component.strategy.value,
            ",".join(component.reqs),
            component.keys_copied,
        )
    return EXIT_OK


def cmd_verify(layout: DataDirLayout, routing: RoutingConfig) -> int:
    """Check the stored layout against the routing config."""
    check_staging(layout)
    multi = MultiProducer(supported_dbs(layout.chaindata), routing, DEFAULT_METADATA_KEYS)
    try:
        multi.verify()
        logger.info("DB layout is compatible, requests=%d", len(multi.names()))
    finally:
        multi.close()
    return EXIT_OK


def cmd_compact(layout: DataDirLayout, routing: RoutingConfig) -> int:
    """Compact every database, one first-byte bucket at a time."""
    for typ, raw in sorted(supported_dbs(layout.chaindata).items()):
        producer = SkipKeysProducer(raw, DEFAULT_METADATA_KEYS.prefix)
        for name in producer.names():
            db = producer.open_db(name)
            try:
                logger.info("Stats before compaction, db=%s/%s", typ, name)
                print(db.stat(f"{typ}.stats"))

                logger.info("Triggering compaction, db=%s/%s", typ, name)
                for b in range(256):
                    limit = bytes([b + 1]) if b < 255 else None
                    logger.debug("Compacting chain database, db=%s range=0x%02X-", name, b)
                    db.compact(bytes([b]), limit)

                logger.info("Stats after compaction, db=%s/%s", typ, name)
                print(db.stat(f"{typ}.stats"))
            finally:
                db.close()
    return EXIT_OK


COMMANDS = {
    "migrate": cmd_migrate,
    "verify": cmd_verify,
    "compact": cmd_compact,
}


def build_parser() -> argparse.ArgumentParser:
    """Command-line parser of the CLI."""
    parser = argparse.ArgumentParser(
        prog="chaindb",
        description="Chain database maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--datadir",
        required=True,
        type=Path,
        help="Node data directory",
    )
    parser.add_argument(
        "--routing",
        type=Path,
        default=None,
        help="Path to routing YAML file (default: every request in its own sqlite DB)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored logging output",
    )
    parser.add_argument("command", choices=sorted(COMMANDS), help="Command to run")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.no_color)

    try:
        routing = (
            RoutingConfig.from_yaml(args.routing) if args.routing is not None else RoutingConfig()
        )
        return COMMANDS[args.command](DataDirLayout(args.datadir), routing)
    except ChainDBError as e:
        logger.critical("Command %s failed: %s", args.command, e)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
