"""Package create / update / delete orchestration.

The catalog row and the stored files live in two resources with no shared
transaction. Create inserts the row first (its id names the files) and
deletes it again if the archive cannot be stored; a crash between those two
steps leaves a placeholder row with an empty ``file_path`` that
``tools/reconcile_orphans.py`` cleans up.

Mutations for one package id are serialized in-process with a keyed lock.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from addon_catalog import crud
from addon_catalog.errors import (
    CatalogError,
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidFormatError,
    InvalidMetadataError,
    NotFoundError,
)
from addon_catalog.metrics import metrics
from addon_catalog.models import Package
from addon_catalog.schemas import Actor, CatalogEntry, PackageCreate, PackageUpdate
from addon_catalog.settings import settings
from addon_catalog.storage import ContentStore, SavedAddon
from addon_catalog.validation import (
    check_size,
    normalize_category_slug,
    validate_archive,
    validate_icon,
    validate_link,
    validate_package_name,
    validate_version,
)

logger = logging.getLogger(__name__)

LINK_FIELDS = ("kofi_url", "youtube_url", "discord_url")
TEXT_FIELDS = ("long_description", "min_game_version", "max_game_version")

_HEADER_UNSAFE = re.compile(r'["\r\n\\]')
_NON_PRINTABLE = re.compile(r"[^\x20-\x7e]")


class KeyedLocks:
    """asyncio locks created on demand per key and dropped when idle."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: int):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


package_locks = KeyedLocks()


@dataclass
class ArchiveDownload:
    package_id: int
    package_name: str
    path: Path
    stream: BinaryIO

    @property
    def filename(self) -> str:
        return f"{download_filename(self.package_name)}.mcaddon"


def download_filename(name: str) -> str:
    """Make a name safe for a Content-Disposition header."""
    return _NON_PRINTABLE.sub("_", _HEADER_UNSAFE.sub("_", name))


@asynccontextmanager
async def _database_errors(db: AsyncSession, action: str):
    try:
        yield
    except CatalogError:
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Database error while trying to %s", action)
        raise InternalError(f"Failed to {action}") from exc


def _check_archive(data: bytes) -> None:
    check_size("Archive", data, settings.max_archive_bytes)
    if not validate_archive(data):
        raise InvalidFormatError("Invalid file format. Only .mcaddon files (ZIP format) are supported")


def _check_icon(store: ContentStore, data: bytes) -> None:
    check_size("Icon", data, store.max_icon_bytes)
    if not validate_icon(data).valid:
        raise InvalidFormatError("Invalid icon format. Only PNG, JPEG, WebP, GIF, and SVG are supported")


def _ensure_owner(actor: Actor, package: Package) -> None:
    if package.author_id != actor.id and actor.role not in settings.elevated_roles:
        raise ForbiddenError("You do not own this package", {"package_id": package.id})


async def _resolve_category(db: AsyncSession, raw_slug: Optional[str]) -> Optional[int]:
    slug = normalize_category_slug(raw_slug)
    if slug is None:
        return None
    category = await crud.get_category_by_slug(db, slug)
    if category is None:
        raise InvalidMetadataError(f"Category not found: {slug}", {"category": slug})
    return category.id


async def _compensate_create(db: AsyncSession, store: ContentStore, package_id: int, name: str) -> None:
    """Undo a partially completed create. Each step is attempted independently."""
    metrics.increment("create_compensations")
    await db.rollback()
    try:
        await run_in_threadpool(store.delete_addon, package_id, name)
    except Exception:
        logger.exception("Compensation: failed to remove archive files for package %s", package_id)
    try:
        await crud.delete_package_row(db, package_id)
    except Exception:
        await db.rollback()
        logger.exception("Compensation: orphaned placeholder row for package %s (%s)", package_id, name)
    try:
        await run_in_threadpool(store.delete_icon, package_id)
    except Exception:
        logger.exception("Compensation: failed to remove icon for package %s", package_id)


async def create_package(
    db: AsyncSession,
    store: ContentStore,
    actor: Actor,
    meta: PackageCreate,
    archive: bytes,
    icon: Optional[bytes] = None,
) -> CatalogEntry:
    if actor.role not in settings.uploader_roles:
        raise ForbiddenError("Only developers and admins can upload addons")

    name = validate_package_name(meta.name)
    version = validate_version(meta.version)
    links = {field: validate_link(field, getattr(meta, field)) for field in LINK_FIELDS}
    _check_archive(archive)
    if icon is not None:
        check_size("Icon", icon, store.max_icon_bytes)

    async with _database_errors(db, "create package"):
        category_id = await _resolve_category(db, meta.category)

        if await crud.package_name_exists(db, name):
            raise ConflictError("Package name already exists", {"name": name})

        values = {
            "name": name,
            "description": meta.description or "",
            "author_id": actor.id,
            "version": version,
            "category_id": category_id,
            **links,
            **{field: getattr(meta, field) or None for field in TEXT_FIELDS},
        }
        try:
            package = await crud.insert_placeholder_package(db, values)
        except IntegrityError as exc:
            await db.rollback()
            if await crud.package_name_exists(db, name):
                raise ConflictError("Package name already exists", {"name": name}) from exc
            raise
        package_id = package.id

    async with package_locks.hold(package_id):
        try:
            with metrics.timer("archive_store_seconds"):
                saved = await run_in_threadpool(store.save_addon, package_id, name, archive)
            await crud.set_package_file(db, package_id, str(saved.path), saved.file_hash)
        except Exception as exc:
            logger.exception("Failed to store archive for new package %s (%s)", package_id, name)
            await _compensate_create(db, store, package_id, name)
            if isinstance(exc, CatalogError):
                raise
            raise InternalError("Failed to store package archive", {"name": name}) from exc

        if icon is not None:
            await _attach_icon_best_effort(db, store, package_id, icon)

    metrics.increment("packages_created")
    metrics.record_histogram("archive_bytes", len(archive))
    logger.info("Created package %s (%s) for author %s", package_id, name, actor.id)
    async with _database_errors(db, "load package"):
        return await crud.get_full_package(db, package_id)


async def _attach_icon_best_effort(db: AsyncSession, store: ContentStore, package_id: int, icon: bytes) -> None:
    """Icons are optional on create: failures are logged, never raised."""
    try:
        saved_icon = await run_in_threadpool(store.save_icon, package_id, icon)
    except Exception:
        metrics.increment("icon_failures")
        logger.exception("Failed to save icon for package %s", package_id)
        return
    try:
        await crud.set_package_icon(db, package_id, saved_icon.url)
    except Exception:
        await db.rollback()
        metrics.increment("icon_failures")
        logger.exception("Failed to record icon URL for package %s", package_id)
        await run_in_threadpool(store.delete_icon, package_id)


async def _collect_changes(
    db: AsyncSession,
    package: Package,
    changes: PackageUpdate,
) -> dict:
    """Resolve the column values an update writes.

    Only fields present in the request appear in the result. Present-but-null
    (or empty) nullable fields resolve to None, which clears them. Name and
    version are required columns, so a null or empty value leaves them as is.
    """
    present = changes.model_fields_set
    values: dict = {}

    if "name" in present and changes.name:
        name = validate_package_name(changes.name)
        if name != package.name and await crud.package_name_exists(db, name, exclude_id=package.id):
            raise ConflictError("Package name already exists", {"name": name})
        values["name"] = name

    if "version" in present and changes.version:
        values["version"] = validate_version(changes.version)

    if "description" in present:
        values["description"] = changes.description or ""

    for field in LINK_FIELDS:
        if field in present:
            values[field] = validate_link(field, getattr(changes, field))

    for field in TEXT_FIELDS:
        if field in present:
            values[field] = getattr(changes, field) or None

    if "category" in present:
        values["category_id"] = await _resolve_category(db, changes.category)

    return values


async def update_package(
    db: AsyncSession,
    store: ContentStore,
    actor: Actor,
    package_id: int,
    changes: PackageUpdate,
    archive: Optional[bytes] = None,
    icon: Optional[bytes] = None,
) -> CatalogEntry:
    async with package_locks.hold(package_id), _database_errors(db, "update package"):
        package = await crud.get_package(db, package_id)
        if package is None:
            raise NotFoundError("Package not found", {"package_id": package_id})
        _ensure_owner(actor, package)

        values = await _collect_changes(db, package, changes)
        if archive is not None:
            _check_archive(archive)
        if icon is not None:
            _check_icon(store, icon)

        current_name = package.name
        new_name = values.get("name", current_name)
        previous_icon = await run_in_threadpool(store.get_icon_path, package_id)

        # new files are written beside the old ones; the old ones go only after the commit
        published: Optional[SavedAddon] = None
        renamed = False
        new_icon: Optional[Path] = None
        try:
            if archive is not None:
                staged = await run_in_threadpool(store.stage_addon, archive)
                with metrics.timer("archive_store_seconds"):
                    published = await run_in_threadpool(store.publish_addon, staged, package_id, new_name)
                values["file_path"] = str(published.path)
                values["file_hash"] = published.file_hash
            elif new_name != current_name:
                await run_in_threadpool(store.rename_addon, package_id, current_name, new_name)
                renamed = True
                latest = await run_in_threadpool(store.get_latest_addon_file, package_id, new_name)
                if latest is not None:
                    values["file_path"] = str(latest)

            if icon is not None:
                saved_icon = await run_in_threadpool(store.write_icon, package_id, icon)
                new_icon = saved_icon.path
                values["icon_url"] = saved_icon.url

            await crud.update_package_fields(db, package_id, values)
        except Exception as exc:
            await db.rollback()
            await _revert_update_files(
                store,
                package_id,
                current_name,
                new_name,
                published=published,
                renamed=renamed,
                new_icon=new_icon if new_icon != previous_icon else None,
            )
            if isinstance(exc, IntegrityError):
                raise ConflictError("Package name already exists", {"name": new_name}) from exc
            if isinstance(exc, (CatalogError, SQLAlchemyError)):
                raise
            logger.exception("Failed to update files for package %s", package_id)
            raise InternalError("Failed to update package files", {"package_id": package_id}) from exc

        await _prune_replaced_files(store, package_id, current_name, new_name, published, new_icon)

        metrics.increment("packages_updated")
        logger.info("Updated package %s (fields: %s)", package_id, sorted(values))
        return await crud.get_full_package(db, package_id)


async def _revert_update_files(
    store: ContentStore,
    package_id: int,
    current_name: str,
    new_name: str,
    *,
    published: Optional[SavedAddon],
    renamed: bool,
    new_icon: Optional[Path],
) -> None:
    """Remove what a failed update wrote so the catalog row still matches the disk."""
    metrics.increment("update_reverts")
    if published is not None:
        try:
            await run_in_threadpool(store.discard_addon_file, published.path)
        except Exception:
            logger.exception("Revert: failed to remove new archive %s", published.path)
    if renamed:
        try:
            await run_in_threadpool(store.rename_addon, package_id, new_name, current_name)
        except Exception:
            logger.exception("Revert: failed to move addon directory back for package %s", package_id)
    if new_icon is not None:
        try:
            await run_in_threadpool(new_icon.unlink, missing_ok=True)
        except Exception:
            logger.exception("Revert: failed to remove new icon %s", new_icon)


async def _prune_replaced_files(
    store: ContentStore,
    package_id: int,
    current_name: str,
    new_name: str,
    published: Optional[SavedAddon],
    new_icon: Optional[Path],
) -> None:
    """Drop archives and icons superseded by a committed update.

    Leftovers are harmless (the newest archive wins), so failures are logged only.
    """
    try:
        if published is not None:
            if new_name != current_name:
                await run_in_threadpool(store.delete_addon, package_id, current_name)
            await run_in_threadpool(store.prune_addons, package_id, new_name, published.path)
        if new_icon is not None:
            await run_in_threadpool(store.prune_icons, package_id, new_icon)
    except Exception:
        metrics.increment("update_cleanup_failures")
        logger.exception("Failed to remove replaced files for package %s", package_id)


async def delete_package(db: AsyncSession, store: ContentStore, actor: Actor, package_id: int) -> None:
    """Delete archives, icon and catalog row.

    The icon is removed as well so no file outlives its package.
    """
    async with package_locks.hold(package_id), _database_errors(db, "delete package"):
        package = await crud.get_package(db, package_id)
        if package is None:
            raise NotFoundError("Package not found", {"package_id": package_id})
        _ensure_owner(actor, package)

        name = package.name
        try:
            await run_in_threadpool(store.delete_addon, package_id, name)
            await run_in_threadpool(store.delete_icon, package_id)
        except Exception as exc:
            logger.exception("Failed to delete files for package %s", package_id)
            raise InternalError("Failed to delete package files", {"package_id": package_id}) from exc

        await crud.delete_package_row(db, package_id)
        metrics.increment("packages_deleted")


async def open_latest_archive(db: AsyncSession, store: ContentStore, name: str) -> ArchiveDownload:
    """Open the newest stored archive of a package for sequential reads."""
    async with _database_errors(db, "load package"):
        package = await crud.get_package_by_name(db, name)
    if package is None:
        raise NotFoundError("Package not found", {"name": name})

    path = await run_in_threadpool(store.get_latest_addon_file, package.id, package.name)
    stream = await run_in_threadpool(store.open_addon_stream, path)
    if stream is None:
        raise NotFoundError("Package file not found", {"name": name})
    return ArchiveDownload(package_id=package.id, package_name=package.name, path=path, stream=stream)
