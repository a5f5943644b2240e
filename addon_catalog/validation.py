from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from addon_catalog.errors import InvalidMetadataError, TooLargeError

ZIP_MAGIC = b"\x50\x4b\x03\x04"

PACKAGE_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")
VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")
DEFAULT_VERSION = "1.0.0"

LINK_PATTERNS = {
    "kofi_url": (
        re.compile(r"^https?://(www\.)?ko-fi\.com/[a-zA-Z0-9_]+/?$"),
        "Invalid Ko-fi URL. Must be in format: https://ko-fi.com/username",
    ),
    "youtube_url": (
        re.compile(r"^https?://(www\.)?(youtube\.com/watch\?v=|youtu\.be/)[a-zA-Z0-9_-]+"),
        "Invalid YouTube URL. Must be a valid YouTube video URL",
    ),
    "discord_url": (
        re.compile(r"^https?://(www\.)?(discord\.(gg|com)/|discordapp\.com/invite/)[a-zA-Z0-9_-]+"),
        "Invalid Discord URL. Must be a valid Discord invite link",
    ),
}

SVG_SNIFF_BYTES = 1024


@dataclass(frozen=True)
class IconType:
    valid: bool
    mime_type: Optional[str] = None
    extension: Optional[str] = None


INVALID_ICON = IconType(valid=False)


def validate_archive(data: bytes) -> bool:
    """Return True when the buffer starts with the ZIP local-file-header signature."""
    return len(data) >= 4 and data[:4] == ZIP_MAGIC


def validate_icon(data: bytes) -> IconType:
    """Classify icon bytes by magic number; first match wins.

    SVG has no binary signature, so it is recognised by a textual sniff of
    the first KiB after every binary format has been ruled out.
    """
    if len(data) < 4:
        return INVALID_ICON

    if data[:4] == b"\x89PNG":
        return IconType(True, "image/png", "png")
    if data[:3] == b"\xff\xd8\xff":
        return IconType(True, "image/jpeg", "jpg")
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return IconType(True, "image/webp", "webp")
    if data[:4] == b"GIF8":
        return IconType(True, "image/gif", "gif")

    head = data[:SVG_SNIFF_BYTES].decode("utf-8", errors="ignore").strip()
    if head.startswith("<?xml") or head.startswith("<svg") or "<svg" in head:
        return IconType(True, "image/svg+xml", "svg")

    return INVALID_ICON


def check_size(kind: str, data: bytes, limit: int) -> None:
    if len(data) > limit:
        raise TooLargeError(kind, len(data), limit)


def validate_package_name(name: Optional[str]) -> str:
    if not name:
        raise InvalidMetadataError("Package name is required")
    if len(name) > 64:
        raise InvalidMetadataError("Package name must be at most 64 characters")
    if not PACKAGE_NAME_RE.match(name):
        raise InvalidMetadataError(
            "Package name can only contain letters, numbers, underscores, and hyphens",
            {"name": name},
        )
    return name


def validate_version(version: Optional[str]) -> str:
    """Return the version to store; absent versions default to 1.0.0."""
    if not version:
        return DEFAULT_VERSION
    if not VERSION_RE.match(version):
        raise InvalidMetadataError("Version must be in format X.Y.Z (e.g., 1.0.0)", {"version": version})
    return version


def validate_link(field: str, value: Optional[str]) -> Optional[str]:
    """Validate an external link field; empty values normalise to None."""
    if not value:
        return None
    pattern, message = LINK_PATTERNS[field]
    if not pattern.match(value):
        raise InvalidMetadataError(message, {"field": field})
    return value


def normalize_category_slug(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    slug = value.strip().lower()
    return slug or None
