import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from addon_catalog.models import Category, DownloadHistory, Package, User
from addon_catalog.schemas import CatalogEntry, CategorySummary

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    return await db.get(User, user_id)


async def get_package(db: AsyncSession, package_id: int) -> Optional[Package]:
    """Get package by id, always re-reading the row."""
    result = await db.execute(
        select(Package).where(Package.id == package_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_package_by_name(db: AsyncSession, name: str) -> Optional[Package]:
    result = await db.execute(
        select(Package).where(Package.name == name).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def package_name_exists(db: AsyncSession, name: str, *, exclude_id: Optional[int] = None) -> bool:
    stmt = select(Package.id).where(Package.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Package.id != exclude_id)
    return (await db.execute(stmt)).first() is not None


async def get_category_by_slug(db: AsyncSession, slug: str) -> Optional[Category]:
    result = await db.execute(select(Category).where(Category.slug == slug))
    return result.scalar_one_or_none()


async def list_categories(db: AsyncSession) -> List[CategorySummary]:
    result = await db.execute(select(Category).order_by(Category.name.asc()))
    return [CategorySummary.model_validate(category) for category in result.scalars().all()]


async def insert_placeholder_package(db: AsyncSession, values: Dict[str, Any]) -> Package:
    """Insert a package row with empty storage path/hash and commit it.

    The committed id names the on-disk artifacts, so the row must exist
    before anything is written to storage.
    """
    package = Package(file_path="", file_hash="", icon_url=None, downloads=0, **values)
    db.add(package)
    await db.commit()
    await db.refresh(package)
    return package


async def set_package_file(db: AsyncSession, package_id: int, file_path: str, file_hash: str) -> None:
    await db.execute(
        update(Package)
        .where(Package.id == package_id)
        .values(file_path=file_path, file_hash=file_hash, updated_at=func.now())
    )
    await db.commit()


async def set_package_icon(db: AsyncSession, package_id: int, icon_url: Optional[str]) -> None:
    await db.execute(
        update(Package)
        .where(Package.id == package_id)
        .values(icon_url=icon_url, updated_at=func.now())
    )
    await db.commit()


async def update_package_fields(db: AsyncSession, package_id: int, values: Dict[str, Any]) -> None:
    """Write resolved field values back; callers decide what changed."""
    if not values:
        return
    await db.execute(
        update(Package)
        .where(Package.id == package_id)
        .values(**values, updated_at=func.now())
    )
    await db.commit()


async def delete_package_row(db: AsyncSession, package_id: int) -> None:
    """Delete a package and its download history."""
    await db.execute(delete(DownloadHistory).where(DownloadHistory.package_id == package_id))
    await db.execute(delete(Package).where(Package.id == package_id))
    await db.commit()
    logger.info("Deleted package row %s", package_id)


async def _load_full(db: AsyncSession, *criteria) -> Optional[Package]:
    stmt = (
        select(Package)
        .options(selectinload(Package.author), selectinload(Package.category))
        .where(*criteria)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_full_package(db: AsyncSession, package_id: int) -> Optional[CatalogEntry]:
    """Package fields plus author and category summaries."""
    package = await _load_full(db, Package.id == package_id)
    if package is None:
        return None
    return CatalogEntry.model_validate(package)


async def get_full_package_by_name(db: AsyncSession, name: str) -> Optional[CatalogEntry]:
    package = await _load_full(db, Package.name == name)
    if package is None:
        return None
    return CatalogEntry.model_validate(package)


async def list_placeholder_packages(db: AsyncSession) -> List[Package]:
    """Rows still carrying an empty storage path (interrupted creates)."""
    result = await db.execute(select(Package).where(Package.file_path == "").order_by(Package.id))
    return list(result.scalars().all())
