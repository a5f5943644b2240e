from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load the repository .env early so uvicorn reload children see it at import time.
REPO_ROOT = Path(__file__).resolve().parent.parent
_env_path = REPO_ROOT / ".env"
load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_path),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = f"sqlite+aiosqlite:///{REPO_ROOT / 'addon_catalog.db'}"

    # Content storage
    storage_root: Path = REPO_ROOT / "storage"
    max_archive_bytes: int = 200 * 1024 * 1024
    max_icon_bytes: int = 2 * 1024 * 1024

    # JWT (verification only, tokens are issued elsewhere)
    jwt_secret_key: str = "dev-secret-key"
    jwt_algorithm: str = "HS256"

    # Roles
    uploader_roles: List[str] = ["developer", "admin"]
    elevated_roles: List[str] = ["admin"]

    # API
    api_base_path: str = "/api/v1"
    log_level: str = "INFO"


settings = Settings()
