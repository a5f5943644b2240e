from datetime import date, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from addon_catalog import crud, downloads, models
from addon_catalog.errors import InvalidMetadataError, NotFoundError
from addon_catalog.metrics import metrics

TODAY = date(2024, 5, 25)


@pytest_asyncio.fixture
async def package(session, actors):
    row = models.Package(
        name="Counter",
        author_id=actors["developer"].id,
        file_path="/tmp/counter.mcaddon",
        file_hash="0" * 64,
    )
    session.add(row)
    await session.commit()
    return row


@pytest.mark.asyncio
async def test_same_day_downloads_share_one_history_row(session, package):
    before = (await crud.get_package(session, package.id)).downloads

    await downloads.record_download(session, package.id, today=TODAY)
    await downloads.record_download(session, package.id, today=TODAY)

    rows = (
        await session.execute(
            select(models.DownloadHistory).where(models.DownloadHistory.package_id == package.id)
        )
    ).scalars().all()
    assert len(rows) == 1
    assert rows[0].day == "2024-05-25"
    assert rows[0].download_count == 2

    after = (await crud.get_package(session, package.id)).downloads
    assert after - before == 2
    assert metrics.counters["downloads_recorded"] == 2


@pytest.mark.asyncio
async def test_record_download_unknown_package(session):
    with pytest.raises(NotFoundError):
        await downloads.record_download(session, 999, today=TODAY)


@pytest.mark.asyncio
async def test_daily_series_is_contiguous_and_zero_filled(session, package):
    yesterday = TODAY - timedelta(days=1)
    for _ in range(3):
        await downloads.record_download(session, package.id, today=yesterday)

    series = await downloads.daily_downloads(session, package.id, 3, today=TODAY)

    assert [(d.date, d.count) for d in series] == [
        ("2024-05-25", 0),
        ("2024-05-24", 3),
        ("2024-05-23", 0),
    ]


@pytest.mark.asyncio
async def test_daily_series_crosses_month_boundary(session, package):
    await downloads.record_download(session, package.id, today=date(2024, 2, 29))

    series = await downloads.daily_downloads(session, package.id, 3, today=date(2024, 3, 1))

    assert [d.date for d in series] == ["2024-03-01", "2024-02-29", "2024-02-28"]
    assert [d.count for d in series] == [0, 1, 0]


@pytest.mark.asyncio
async def test_daily_default_window_length(session, package):
    series = await downloads.daily_downloads(session, package.id, today=TODAY)
    assert len(series) == downloads.DEFAULT_DAYS
    assert series[0].date == TODAY.isoformat()
    assert all(d.count == 0 for d in series)


@pytest.mark.asyncio
async def test_monthly_series_sums_and_omits_empty_months(session, package):
    for day in (date(2024, 2, 28), date(2024, 3, 5), date(2024, 3, 5), date(2024, 5, 1), date(2024, 5, 20)):
        await downloads.record_download(session, package.id, today=day)

    series = await downloads.monthly_downloads(session, package.id, 3, today=TODAY)

    assert [(m.month, m.count) for m in series] == [("2024-05", 2), ("2024-03", 2)]


@pytest.mark.asyncio
async def test_total_downloads_in_range(session, package, actors):
    other = models.Package(name="Other", author_id=actors["developer"].id, file_path="x", file_hash="y")
    session.add(other)
    await session.commit()

    for day in (date(2024, 3, 1), date(2024, 4, 15), date(2024, 5, 2)):
        await downloads.record_download(session, package.id, today=day)
    await downloads.record_download(session, other.id, today=date(2024, 4, 15))

    start, end = date(2024, 3, 1), date(2024, 5, 1)
    assert await downloads.total_downloads_in_range(session, start, end, package_id=package.id) == 2
    assert await downloads.total_downloads_in_range(session, start, end) == 3

    with pytest.raises(InvalidMetadataError):
        await downloads.total_downloads_in_range(session, end, start)


@pytest.mark.asyncio
async def test_window_sizes_must_be_positive(session, package):
    with pytest.raises(InvalidMetadataError):
        await downloads.daily_downloads(session, package.id, 0, today=TODAY)
    with pytest.raises(InvalidMetadataError):
        await downloads.monthly_downloads(session, package.id, 0, today=TODAY)
