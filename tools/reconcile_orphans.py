#!/usr/bin/env python3
"""Find package rows left behind by an interrupted create and optionally remove them.

A create that dies between inserting the row and publishing the archive leaves
a row whose file_path is still empty. Dry run by default; run --apply only
while the API is stopped, since an in-flight create also has an empty path.
"""

import argparse
import asyncio
from typing import Optional

from addon_catalog import crud, database
from addon_catalog.settings import settings
from addon_catalog.storage import ContentStore


async def reconcile(session, store: ContentStore, apply: bool) -> int:
    orphans = await crud.list_placeholder_packages(session)
    for package in orphans:
        print(f"orphan: id={package.id} name={package.name} created_at={package.created_at}")
        if apply:
            store.delete_addon(package.id, package.name)
            store.delete_icon(package.id)
            await crud.delete_package_row(session, package.id)
    return len(orphans)


async def _run(database_url: Optional[str], apply: bool) -> None:
    database.init_engine(database_url)
    store = ContentStore(settings.storage_root, max_icon_bytes=settings.max_icon_bytes)
    try:
        async with database.AsyncSessionLocal() as session:
            count = await reconcile(session, store, apply)
    finally:
        await database.dispose_engine()

    verb = "removed" if apply else "found"
    print(f"{count} orphaned package rows {verb}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile orphaned placeholder package rows")
    parser.add_argument("--apply", action="store_true", help="Delete the rows instead of only listing them")
    parser.add_argument("--database-url", help="Override DATABASE_URL for this run")
    args = parser.parse_args()

    asyncio.run(_run(args.database_url, args.apply))


if __name__ == "__main__":
    main()
