import base64
import binascii
import logging
import os
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from addon_catalog import crud, downloads, ingestion
from addon_catalog.auth import require_actor
from addon_catalog.database import get_db
from addon_catalog.errors import CatalogError, InvalidMetadataError, NotFoundError
from addon_catalog.schemas import (
    Actor,
    CatalogEntry,
    CategorySummary,
    DownloadStats,
    MonthlyDownloadStats,
    PackageCreate,
    PackageUpdate,
)
from addon_catalog.settings import settings
from addon_catalog.storage import ContentStore, iter_file
from addon_catalog.validation import check_size

logger = logging.getLogger(__name__)

router = APIRouter(prefix=settings.api_base_path, tags=["packages"])
# stored icon URLs are root-relative (/icons/{id}.{ext})
icons_router = APIRouter(tags=["icons"])

_content_store: Optional[ContentStore] = None


def get_content_store() -> ContentStore:
    """FastAPI dependency for the process-wide content store."""
    global _content_store
    if _content_store is None:
        _content_store = ContentStore(settings.storage_root, max_icon_bytes=settings.max_icon_bytes)
    return _content_store


def _raise_http(exc: CatalogError) -> NoReturn:
    if exc.status_code >= 500:
        logger.error("Request failed: %s", exc.to_dict())
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


async def _read_upload(upload: UploadFile, kind: str, limit: int) -> bytes:
    # read one byte past the limit so oversize uploads are detected without buffering them whole
    data = await upload.read(limit + 1)
    check_size(kind, data, limit)
    return data


def _decode_base64(field: str, value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidMetadataError(f"{field} is not valid base64", {"field": field}) from exc


@router.post("/packages", response_model=CatalogEntry, status_code=status.HTTP_201_CREATED)
async def upload_package(
    file: UploadFile = File(...),
    icon: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    version: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    kofi_url: Optional[str] = Form(None, alias="kofiUrl"),
    long_description: Optional[str] = Form(None, alias="longDescription"),
    youtube_url: Optional[str] = Form(None, alias="youtubeUrl"),
    discord_url: Optional[str] = Form(None, alias="discordUrl"),
    min_game_version: Optional[str] = Form(None, alias="minGameVersion"),
    max_game_version: Optional[str] = Form(None, alias="maxGameVersion"),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
    store: ContentStore = Depends(get_content_store),
):
    meta = PackageCreate(
        name=name,
        description=description,
        version=version,
        category=category,
        kofi_url=kofi_url,
        long_description=long_description,
        youtube_url=youtube_url,
        discord_url=discord_url,
        min_game_version=min_game_version,
        max_game_version=max_game_version,
    )
    try:
        archive = await _read_upload(file, "Archive", settings.max_archive_bytes)
        icon_bytes = None
        if icon is not None and icon.filename:
            icon_bytes = await _read_upload(icon, "Icon", store.max_icon_bytes)
        return await ingestion.create_package(db, store, actor, meta, archive, icon_bytes)
    except CatalogError as exc:
        _raise_http(exc)


@router.put("/packages/{package_id}", response_model=CatalogEntry)
async def edit_package(
    package_id: int,
    changes: PackageUpdate,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
    store: ContentStore = Depends(get_content_store),
):
    try:
        archive = _decode_base64("fileBase64", changes.file_base64)
        icon = _decode_base64("iconBase64", changes.icon_base64)
        return await ingestion.update_package(db, store, actor, package_id, changes, archive, icon)
    except CatalogError as exc:
        _raise_http(exc)


@router.delete("/packages/{package_id}")
async def remove_package(
    package_id: int,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_db),
    store: ContentStore = Depends(get_content_store),
):
    try:
        await ingestion.delete_package(db, store, actor, package_id)
    except CatalogError as exc:
        _raise_http(exc)
    return {"success": True}


@router.get("/packages/{name}", response_model=CatalogEntry)
async def get_package(name: str, db: AsyncSession = Depends(get_db)):
    entry = await crud.get_full_package_by_name(db, name)
    if entry is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return entry


@router.get("/packages/{name}/download")
async def download_package(
    name: str,
    db: AsyncSession = Depends(get_db),
    store: ContentStore = Depends(get_content_store),
):
    try:
        archive = await ingestion.open_latest_archive(db, store, name)
    except CatalogError as exc:
        _raise_http(exc)

    try:
        await downloads.record_download(db, archive.package_id)
    except CatalogError as exc:
        archive.stream.close()
        _raise_http(exc)

    return StreamingResponse(
        iter_file(archive.stream),
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{archive.filename}"'},
    )


async def _require_package(db: AsyncSession, package_id: int) -> None:
    if await crud.get_package(db, package_id) is None:
        raise NotFoundError("Package not found", {"package_id": package_id})


@router.get("/packages/{package_id}/downloads/daily", response_model=DownloadStats)
async def daily_download_stats(
    package_id: int,
    days: int = Query(downloads.DEFAULT_DAYS),
    db: AsyncSession = Depends(get_db),
):
    try:
        await _require_package(db, package_id)
        series = await downloads.daily_downloads(db, package_id, days)
    except CatalogError as exc:
        _raise_http(exc)
    return DownloadStats(package_id=package_id, total=sum(day.count for day in series), series=series)


@router.get("/packages/{package_id}/downloads/monthly", response_model=MonthlyDownloadStats)
async def monthly_download_stats(
    package_id: int,
    months: int = Query(downloads.DEFAULT_MONTHS),
    db: AsyncSession = Depends(get_db),
):
    try:
        await _require_package(db, package_id)
        series = await downloads.monthly_downloads(db, package_id, months)
    except CatalogError as exc:
        _raise_http(exc)
    return MonthlyDownloadStats(package_id=package_id, series=series)


@router.get("/categories", response_model=List[CategorySummary])
async def get_categories(db: AsyncSession = Depends(get_db)):
    return await crud.list_categories(db)


@icons_router.get("/icons/{filename}")
async def get_icon(filename: str, store: ContentStore = Depends(get_content_store)):
    if os.path.basename(filename) != filename or ".." in filename:
        raise HTTPException(status_code=400, detail="Invalid filename")

    resolved = store.resolve_icon_file(filename)
    if resolved is None:
        raise HTTPException(status_code=404, detail="Icon not found")

    path, mime_type = resolved
    headers = {
        "Cache-Control": "public, max-age=86400",
        "X-Content-Type-Options": "nosniff",
    }
    # SVGs are served inline but must never run script
    if mime_type == "image/svg+xml":
        headers["Content-Security-Policy"] = "default-src 'none'; style-src 'unsafe-inline'"
        headers["Content-Disposition"] = "inline"
    return FileResponse(path, media_type=mime_type, headers=headers)
