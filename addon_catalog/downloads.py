from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from addon_catalog.errors import InternalError, InvalidMetadataError, NotFoundError
from addon_catalog.metrics import metrics
from addon_catalog.models import DownloadHistory, Package
from addon_catalog.schemas import DailyDownloads, MonthlyDownloads

logger = logging.getLogger(__name__)

DEFAULT_DAYS = 30
DEFAULT_MONTHS = 12

_DAILY_SERIES_SQL = {
    "postgresql": """
        WITH dates AS (
            SELECT to_char(d, 'YYYY-MM-DD') AS day
            FROM generate_series(CAST(:start_day AS date), CAST(:end_day AS date), INTERVAL '1 day') AS d
        )
        SELECT dates.day AS day, COALESCE(dh.download_count, 0) AS count
        FROM dates
        LEFT JOIN download_history dh
          ON dh.day = dates.day AND dh.package_id = :package_id
        ORDER BY dates.day DESC
    """,
    "sqlite": """
        WITH RECURSIVE dates(day) AS (
            SELECT :start_day
            UNION ALL
            SELECT date(day, '+1 day') FROM dates WHERE day < :end_day
        )
        SELECT dates.day AS day, COALESCE(dh.download_count, 0) AS count
        FROM dates
        LEFT JOIN download_history dh
          ON dh.day = dates.day AND dh.package_id = :package_id
        ORDER BY dates.day DESC
    """,
}


def _dialect_name(db: AsyncSession) -> str:
    return getattr(getattr(db.bind, "dialect", None), "name", "")


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _first_of_month_back(today: date, months: int) -> date:
    """First day of the month ``months - 1`` months before ``today``'s month."""
    index = today.year * 12 + (today.month - 1) - (months - 1)
    return date(index // 12, index % 12 + 1, 1)


def _upsert_statement(dialect_name: str, package_id: int, day: str):
    if dialect_name == "postgresql":
        stmt = pg_insert(DownloadHistory)
    elif dialect_name == "sqlite":
        stmt = sqlite_insert(DownloadHistory)
    else:
        raise RuntimeError(f"Unsupported database dialect: {dialect_name}")

    stmt = stmt.values(package_id=package_id, day=day, download_count=1)
    return stmt.on_conflict_do_update(
        index_elements=[DownloadHistory.package_id, DownloadHistory.day],
        set_={
            "download_count": DownloadHistory.download_count + 1,
            "updated_at": func.now(),
        },
    )


async def record_download(db: AsyncSession, package_id: int, today: Optional[date] = None) -> None:
    """Count one download against today's history row and the package total.

    Both writes commit together so the aggregate cannot drift from the
    per-day rows.
    """
    exists = (await db.execute(select(Package.id).where(Package.id == package_id))).first()
    if exists is None:
        raise NotFoundError("Package not found", {"package_id": package_id})

    day = (today or utc_today()).isoformat()
    try:
        await db.execute(_upsert_statement(_dialect_name(db), package_id, day))
        await db.execute(
            update(Package)
            .where(Package.id == package_id)
            .values(downloads=Package.downloads + 1)
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to record download for package %s", package_id)
        raise InternalError("Failed to record download", {"package_id": package_id}) from exc

    metrics.increment("downloads_recorded")


async def daily_downloads(
    db: AsyncSession,
    package_id: int,
    days: int = DEFAULT_DAYS,
    today: Optional[date] = None,
) -> List[DailyDownloads]:
    """Per-day counts for the last ``days`` days, newest first, zero-filled."""
    if days < 1:
        raise InvalidMetadataError("days must be at least 1", {"days": days})

    end_day = today or utc_today()
    start_day = end_day - timedelta(days=days - 1)

    dialect_name = _dialect_name(db)
    sql = _DAILY_SERIES_SQL.get(dialect_name)
    if sql is None:
        raise RuntimeError(f"Unsupported database dialect: {dialect_name}")

    # asyncpg wants real dates for the casts; SQLite compares ISO text
    if dialect_name == "postgresql":
        params = {"start_day": start_day, "end_day": end_day, "package_id": package_id}
    else:
        params = {"start_day": start_day.isoformat(), "end_day": end_day.isoformat(), "package_id": package_id}

    rows = await db.execute(text(sql), params)
    return [DailyDownloads(date=row.day, count=int(row.count or 0)) for row in rows]


async def monthly_downloads(
    db: AsyncSession,
    package_id: int,
    months: int = DEFAULT_MONTHS,
    today: Optional[date] = None,
) -> List[MonthlyDownloads]:
    """Per-month sums (YYYY-MM) for the last ``months`` months, newest first.

    Months without any downloads are omitted.
    """
    if months < 1:
        raise InvalidMetadataError("months must be at least 1", {"months": months})

    start_day = _first_of_month_back(today or utc_today(), months)
    month = func.substr(DownloadHistory.day, 1, 7).label("month")
    stmt = (
        select(month, func.sum(DownloadHistory.download_count).label("total"))
        .where(
            DownloadHistory.package_id == package_id,
            DownloadHistory.day >= start_day.isoformat(),
        )
        .group_by(month)
        .order_by(month.desc())
        .limit(months)
    )
    rows = await db.execute(stmt)
    return [MonthlyDownloads(month=row.month, count=int(row.total or 0)) for row in rows]


async def total_downloads_in_range(
    db: AsyncSession,
    start_day: date,
    end_day: date,
    package_id: Optional[int] = None,
) -> int:
    """Inclusive sum of per-day counts, optionally for one package."""
    if end_day < start_day:
        raise InvalidMetadataError("end date must be on or after start date")

    stmt = select(func.coalesce(func.sum(DownloadHistory.download_count), 0)).where(
        DownloadHistory.day >= start_day.isoformat(),
        DownloadHistory.day <= end_day.isoformat(),
    )
    if package_id is not None:
        stmt = stmt.where(DownloadHistory.package_id == package_id)
    return int((await db.execute(stmt)).scalar_one())
