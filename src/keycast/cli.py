"""keycast command line.

Subcommands:
    run      Start the worker until SIGTERM/SIGINT (default)
    migrate  Apply pending database migrations
    issue    Run one issuance cycle against a randomly picked active server
    reclaim  Run one reclamation cycle
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from keycast import __version__
from keycast.core.settings import get_settings
from keycast.db.migrate import upgrade_to_head
from keycast.services.key_store import RecordStoreError
from keycast.worker.main import configure_logging, open_lifecycle, run

if TYPE_CHECKING:
    from collections.abc import Sequence

    from keycast.core.config import Settings

logger = logging.getLogger(__name__)


async def issue_once(settings: Settings) -> int:
    """Run one issuance cycle and report whether it fully succeeded."""
    async with open_lifecycle(settings) as (service, store):
        try:
            server = await store.pick_eligible_server()
        except RecordStoreError as e:
            logger.error("Cannot read server inventory: %s", e)
            return 1

        if server is None:
            logger.error("No eligible servers in inventory")
            return 1

        result = await service.issue([server])

    if not result.success:
        logger.error("Issuance incomplete at stage %s: %s", result.stage.value, result.error)
        return 1
    return 0


async def reclaim_once(settings: Settings) -> int:
    """Run one reclamation cycle and report whether every expired key was reclaimed."""
    async with open_lifecycle(settings) as (service, _store):
        result = await service.reclaim_expired()

    if result.error or result.failed_ids:
        return 1
    return 0


def migrate(settings: Settings) -> int:
    """Apply pending migrations."""
    try:
        upgrade_to_head(str(settings.database.url))
    except Exception as e:
        logger.critical("Database migration failed: %s", e)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="keycast",
        description="Issue, announce and reclaim time-limited proxy access keys",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Start the worker (default)")
    subparsers.add_parser("migrate", help="Apply pending database migrations")
    subparsers.add_parser("issue", help="Issue and announce one access key, then exit")
    subparsers.add_parser("reclaim", help="Revoke expired access keys once, then exit")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Command line entry point.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:]).

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    if command == "run":
        run()

    configure_logging("INFO")
    settings = get_settings()
    configure_logging(settings.log_level)

    if command == "migrate":
        return migrate(settings)
    if command == "issue":
        return asyncio.run(issue_once(settings))
    return asyncio.run(reclaim_once(settings))


if __name__ == "__main__":
    sys.exit(main())
