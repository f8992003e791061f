"""cartstream database management CLI.

Creates or drops the cart, product and coupon tables for the configured
database (``DATABASE_URL`` / ``CARTSTREAM_ENV``).

Usage:
    python -m cartstream.manage setup-db   # Create all tables
    python -m cartstream.manage drop-db    # Drop all tables
"""

import argparse
import asyncio
import sys

from cartstream.config import Settings, load_settings
from cartstream.utils.db import create_engine_for, drop_db, setup_db


async def setup_database(settings: Settings) -> None:
    engine = create_engine_for(settings)
    try:
        print(f"Creating schema on {settings.database_url}...")
        await setup_db(engine)
        print("Done.")
    finally:
        await engine.dispose()


async def drop_database(settings: Settings) -> None:
    engine = create_engine_for(settings)
    try:
        print(f"Dropping schema on {settings.database_url}...")
        await drop_db(engine)
        print("Done.")
    finally:
        await engine.dispose()


def main(argv=None):
    parser = argparse.ArgumentParser(description="cartstream database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (("setup-db", "Create all database tables"), ("drop-db", "Drop all database tables")):
        subparser = subparsers.add_parser(name, help=help_text)
        subparser.add_argument("--database-url", help="Override the configured database URL")

    args = parser.parse_args(argv)

    overrides = {"database_url": args.database_url} if args.database_url else {}
    settings = load_settings(**overrides)

    if args.command == "setup-db":
        asyncio.run(setup_database(settings))
    elif args.command == "drop-db":
        asyncio.run(drop_database(settings))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
