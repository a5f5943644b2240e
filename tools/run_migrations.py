#!/usr/bin/env python3
"""Apply pending schema migrations, category seeds and data migrations from the CLI."""

import argparse
import asyncio
import logging
from typing import Optional

from addon_catalog import database
from addon_catalog.migrations import run_startup_migrations


async def _run(database_url: Optional[str]) -> None:
    engine = database.init_engine(database_url)
    try:
        report = await run_startup_migrations(engine)
    finally:
        await database.dispose_engine()

    print(f"schema migrations applied: {', '.join(report.schema_applied) or 'none'}")
    print(f"categories seeded: {report.categories_seeded}")
    print(f"data migrations applied: {', '.join(report.data_applied) or 'none'}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run addon catalog migrations")
    parser.add_argument("--database-url", help="Override DATABASE_URL for this run")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log each applied step")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    asyncio.run(_run(args.database_url))


if __name__ == "__main__":
    main()
