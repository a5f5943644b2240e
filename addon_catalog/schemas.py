from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Actor(BaseModel):
    """Authenticated caller, resolved by the request layer."""

    id: int
    role: str = "user"


# Package metadata supplied with an upload
class PackageCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    category: Optional[str] = None
    long_description: Optional[str] = Field(None, alias="longDescription")
    kofi_url: Optional[str] = Field(None, alias="kofiUrl")
    youtube_url: Optional[str] = Field(None, alias="youtubeUrl")
    discord_url: Optional[str] = Field(None, alias="discordUrl")
    min_game_version: Optional[str] = Field(None, alias="minGameVersion")
    max_game_version: Optional[str] = Field(None, alias="maxGameVersion")


class PackageUpdate(BaseModel):
    """Partial update.

    Presence matters: a field missing from ``model_fields_set`` is left
    unchanged, a field present with ``None`` clears the stored value.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    category: Optional[str] = None
    long_description: Optional[str] = Field(None, alias="longDescription")
    kofi_url: Optional[str] = Field(None, alias="kofiUrl")
    youtube_url: Optional[str] = Field(None, alias="youtubeUrl")
    discord_url: Optional[str] = Field(None, alias="discordUrl")
    min_game_version: Optional[str] = Field(None, alias="minGameVersion")
    max_game_version: Optional[str] = Field(None, alias="maxGameVersion")
    # HTTP-only transport of replacement content
    file_base64: Optional[str] = Field(None, alias="fileBase64")
    icon_base64: Optional[str] = Field(None, alias="iconBase64")


class AuthorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str


class CategorySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str


class CatalogEntry(BaseModel):
    """Package row joined with its author and category summaries."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str = ""
    author_id: int
    version: str
    file_path: str
    file_hash: str
    category_id: Optional[int] = None
    downloads: int = 0
    icon_url: Optional[str] = None
    long_description: Optional[str] = None
    kofi_url: Optional[str] = None
    youtube_url: Optional[str] = None
    discord_url: Optional[str] = None
    min_game_version: Optional[str] = None
    max_game_version: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    author: Optional[AuthorSummary] = None
    category: Optional[CategorySummary] = None


class DailyDownloads(BaseModel):
    date: str
    count: int


class MonthlyDownloads(BaseModel):
    month: str
    count: int


class DownloadStats(BaseModel):
    package_id: int
    total: int
    series: List[DailyDownloads]


class MonthlyDownloadStats(BaseModel):
    package_id: int
    series: List[MonthlyDownloads]
