"""Player-shop operator entry-point.

Usage:
    python -m playershop [--sql | --file] [--migrate] [--log-level LEVEL] [--log-format FORMAT]

Starts the store exactly as an embedding server would (backend selection,
one-shot migration into an empty SQL backend, load), prints a short summary
and shuts the store down cleanly.  Useful to check a data directory, to run
the File-to-SQL migration ahead of time, or to upgrade a legacy shop document
in place (``--file --flush``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from playershop.core import configure_logging
from playershop.core.exceptions import PlayerShopError
from playershop.core.settings import Settings, load_settings


async def _run(settings: Settings, *, flush: bool) -> int:
    from playershop.orchestrator.manager import ShopManager  # noqa: PLC0415

    async with ShopManager(settings) as shop:
        owners = shop.tracker.all_owners()
        print(f"backend:  {shop.storage.name}")  # noqa: T201
        print(f"owners:   {len(owners)} ({len(shop.open_shop_owners())} open with listings)")  # noqa: T201
        print(f"listings: {shop.tracker.listing_count}")  # noqa: T201
        if shop.migration_report is not None:
            print(f"migrated: {shop.migration_report}")  # noqa: T201
        if flush and not await shop.flush():
            return 1
    return 0


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="playershop",
        description="Load the player-shop store, report its content and shut it down.",
    )
    backend = parser.add_mutually_exclusive_group()
    backend.add_argument(
        "--sql",
        dest="enable_sql",
        action="store_const",
        const=True,
        default=None,
        help=(
            "Use the SQL backend regardless of ENABLE_SQL.  An empty database "
            "is filled from the shop file on startup."
        ),
    )
    backend.add_argument(
        "--file",
        dest="enable_sql",
        action="store_const",
        const=False,
        help="Use the JSON shop file regardless of ENABLE_SQL.",
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Shorthand for --sql: run the one-shot File-to-SQL migration and exit.",
    )
    parser.add_argument(
        "--flush",
        action="store_true",
        help="Write the shop file back before exiting (rewrites legacy layouts).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    args = parser.parse_args()

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"playershop: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    overrides: dict[str, object] = {}
    if args.migrate:
        overrides["enable_sql"] = True
    elif args.enable_sql is not None:
        overrides["enable_sql"] = args.enable_sql

    try:
        settings = load_settings(**overrides)
        sys.exit(asyncio.run(_run(settings, flush=args.flush)))
    except PlayerShopError as exc:
        logger.critical("Player shop failed: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
