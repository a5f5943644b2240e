"""Local filesystem storage for add-on archives and package icons.

Layout under the storage root::

    addons/{id}-{sanitized name}/addon-{epoch millis}.mcaddon
    icons/{id}.{png|jpg|webp|gif|svg}
    temp/                      staged uploads awaiting publish

All functions here are blocking; async callers dispatch them to a worker
thread.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple

from addon_catalog.errors import InvalidFormatError
from addon_catalog.sanitizer import sanitize_svg
from addon_catalog.validation import check_size, validate_archive, validate_icon

logger = logging.getLogger(__name__)

ADDON_PREFIX = "addon-"
ADDON_SUFFIX = ".mcaddon"
ICON_EXTENSIONS = ("png", "jpg", "webp", "gif", "svg")
ICON_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}
MAX_DIR_NAME = 64
STREAM_CHUNK_SIZE = 64 * 1024

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|]')
_LEADING_DOTS = re.compile(r"^\.+")


def sanitize_for_filesystem(name: str) -> str:
    """Make a package name safe to use as a single path component."""
    name = _UNSAFE_CHARS.sub("_", name)
    name = name.replace("..", "_")
    name = _LEADING_DOTS.sub("_", name)
    return name[:MAX_DIR_NAME]


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(STREAM_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class StagedAddon:
    temp_path: Path
    file_hash: str


@dataclass(frozen=True)
class SavedAddon:
    path: Path
    file_hash: str


@dataclass(frozen=True)
class SavedIcon:
    path: Path
    url: str


class ContentStore:
    def __init__(self, root: Path, *, max_icon_bytes: int = 2 * 1024 * 1024, icon_url_prefix: str = "/icons"):
        self.root = Path(root)
        self.addons_dir = self.root / "addons"
        self.icons_dir = self.root / "icons"
        self.temp_dir = self.root / "temp"
        self.max_icon_bytes = max_icon_bytes
        self.icon_url_prefix = icon_url_prefix.rstrip("/")

    def initialize(self) -> None:
        """Create the storage directories if they are missing."""
        for directory in (self.addons_dir, self.icons_dir, self.temp_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Archives
    # ------------------------------------------------------------------

    def addon_dir(self, package_id: int, package_name: str) -> Path:
        return self.addons_dir / f"{package_id}-{sanitize_for_filesystem(package_name)}"

    def stage_addon(self, data: bytes) -> StagedAddon:
        """Validate and write archive bytes to the temp area.

        Nothing is written when validation fails.
        """
        if not validate_archive(data):
            raise InvalidFormatError("Invalid file format. Only .mcaddon files (ZIP format) are supported")

        self.initialize()
        file_hash = sha256_bytes(data)
        fd, temp_name = tempfile.mkstemp(prefix=ADDON_PREFIX, suffix=".part", dir=self.temp_dir)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
        except Exception:
            logger.exception("Failed to stage addon upload: %s", temp_name)
            Path(temp_name).unlink(missing_ok=True)
            raise
        return StagedAddon(temp_path=Path(temp_name), file_hash=file_hash)

    def publish_addon(self, staged: StagedAddon, package_id: int, package_name: str) -> SavedAddon:
        """Atomically move a staged archive into the package directory."""
        package_dir = self.addon_dir(package_id, package_name)
        try:
            package_dir.mkdir(parents=True, exist_ok=True)
            timestamp = _epoch_millis()
            target = package_dir / f"{ADDON_PREFIX}{timestamp}{ADDON_SUFFIX}"
            # successive saves inside one millisecond must still accumulate
            while target.exists():
                timestamp += 1
                target = package_dir / f"{ADDON_PREFIX}{timestamp}{ADDON_SUFFIX}"
            os.replace(staged.temp_path, target)
        except Exception:
            logger.exception("Failed to publish addon for package %s", package_id)
            self.discard_staged(staged)
            raise
        logger.info("Stored addon for package %s at %s", package_id, target)
        return SavedAddon(path=target, file_hash=staged.file_hash)

    def discard_staged(self, staged: StagedAddon) -> None:
        staged.temp_path.unlink(missing_ok=True)

    def save_addon(self, package_id: int, package_name: str, data: bytes) -> SavedAddon:
        staged = self.stage_addon(data)
        return self.publish_addon(staged, package_id, package_name)

    def prune_addons(self, package_id: int, package_name: str, keep: Path) -> None:
        """Remove every archive in the package directory except ``keep``."""
        package_dir = self.addon_dir(package_id, package_name)
        if not package_dir.is_dir():
            return
        for entry in package_dir.iterdir():
            if entry.is_file() and entry != keep:
                entry.unlink(missing_ok=True)

    def discard_addon_file(self, path: Path) -> None:
        """Remove one published archive, and its directory if that leaves it empty."""
        path = Path(path)
        path.unlink(missing_ok=True)
        try:
            path.parent.rmdir()
        except OSError:
            pass

    def get_latest_addon_file(self, package_id: int, package_name: str) -> Optional[Path]:
        """Return the newest archive for a package, or None.

        Timestamps are fixed-width decimal, so the lexicographically greatest
        filename is the most recent upload.
        """
        package_dir = self.addon_dir(package_id, package_name)
        if not package_dir.is_dir():
            return None
        candidates = sorted(
            entry.name
            for entry in package_dir.iterdir()
            if entry.is_file() and entry.name.endswith(ADDON_SUFFIX)
        )
        if not candidates:
            return None
        return package_dir / candidates[-1]

    def delete_addon(self, package_id: int, package_name: str) -> None:
        """Remove every archive for a package; missing directories are fine."""
        package_dir = self.addon_dir(package_id, package_name)
        if not package_dir.exists():
            return
        try:
            for entry in package_dir.iterdir():
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink(missing_ok=True)
            package_dir.rmdir()
        except FileNotFoundError:
            pass
        except Exception:
            logger.exception("Failed to delete addon directory: %s", package_dir)
            raise
        logger.info("Deleted addon directory %s", package_dir)

    def rename_addon(self, package_id: int, old_name: str, new_name: str) -> None:
        """Move a package directory after a rename so downloads keep resolving."""
        source = self.addon_dir(package_id, old_name)
        target = self.addon_dir(package_id, new_name)
        if source == target or not source.exists():
            return
        if target.exists():
            self.delete_addon(package_id, new_name)
        os.replace(source, target)
        logger.info("Moved addon directory %s -> %s", source, target)

    def open_addon_stream(self, path: Optional[Path]) -> Optional[BinaryIO]:
        if path is None or not Path(path).is_file():
            return None
        return open(path, "rb")

    # ------------------------------------------------------------------
    # Icons
    # ------------------------------------------------------------------

    def write_icon(self, package_id: int, data: bytes) -> SavedIcon:
        """Validate and write an icon; icons stored under other extensions are kept."""
        check_size("Icon", data, self.max_icon_bytes)
        icon_type = validate_icon(data)
        if not icon_type.valid or not icon_type.extension:
            raise InvalidFormatError("Invalid icon format. Only PNG, JPEG, WebP, GIF, and SVG are supported")

        self.initialize()
        payload = sanitize_svg(data) if icon_type.extension == "svg" else data

        filename = f"{package_id}.{icon_type.extension}"
        path = self.icons_dir / filename
        fd, temp_name = tempfile.mkstemp(prefix="icon-", suffix=".part", dir=self.temp_dir)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.replace(temp_name, path)
        except Exception:
            logger.exception("Failed to save icon for package %s", package_id)
            Path(temp_name).unlink(missing_ok=True)
            raise
        return SavedIcon(path=path, url=f"{self.icon_url_prefix}/{filename}")

    def save_icon(self, package_id: int, data: bytes) -> SavedIcon:
        saved = self.write_icon(package_id, data)
        # the extension may change between uploads
        self.prune_icons(package_id, keep=saved.path)
        return saved

    def prune_icons(self, package_id: int, keep: Optional[Path] = None) -> None:
        for ext in ICON_EXTENSIONS:
            path = self.icons_dir / f"{package_id}.{ext}"
            if path != keep:
                path.unlink(missing_ok=True)

    def delete_icon(self, package_id: int) -> None:
        self.prune_icons(package_id)

    def get_icon_path(self, package_id: int) -> Optional[Path]:
        for ext in ICON_EXTENSIONS:
            path = self.icons_dir / f"{package_id}.{ext}"
            if path.is_file():
                return path
        return None

    def resolve_icon_file(self, filename: str) -> Optional[Tuple[Path, str]]:
        """Map a requested icon filename to (path, mime type) without allowing traversal."""
        safe_name = _UNSAFE_CHARS.sub("_", filename).replace("..", "_")
        path = self.icons_dir / safe_name
        if not path.is_file():
            return None
        ext = safe_name.rsplit(".", 1)[-1].lower() if "." in safe_name else ""
        return path, ICON_MIME_TYPES.get(ext, "application/octet-stream")


def iter_file(stream: BinaryIO, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield a file in chunks and close it when exhausted."""
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()
