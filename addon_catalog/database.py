from typing import Optional
import logging
from urllib.parse import urlparse, urlunparse, parse_qs

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from addon_catalog.settings import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url

# Engine creation is deferred until init_engine() so importing this module never
# touches the database (uvicorn --reload children import modules early).
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def _normalize_db_url(raw_url: str) -> tuple[str, dict]:
    """Normalize a raw DATABASE_URL for SQLAlchemy async drivers and extract connect_args."""
    # sqlite URLs carry absolute paths as "////"; a urlparse round trip can eat them
    if raw_url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + raw_url[len("sqlite://"):], {}
    if raw_url.startswith("sqlite+"):
        return raw_url, {}

    _parsed = urlparse(raw_url)
    _scheme = _parsed.scheme

    _query = parse_qs(_parsed.query or "")
    _use_ssl = False
    if "sslmode" in _query:
        sslmode_val = _query.get("sslmode", [""])[0].lower()
        # treat any non-disable value as requiring SSL
        if sslmode_val and sslmode_val != "disable":
            _use_ssl = True

    if _scheme in ("postgres", "postgresql"):
        _scheme = "postgresql+asyncpg"

    clean_url = urlunparse(_parsed._replace(scheme=_scheme, query=""))
    connect_args = {"ssl": "require"} if _use_ssl else {}
    return clean_url, connect_args


def init_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the async engine and session factory.
    Call this during application startup (or from a tool script) before
    using get_db() or AsyncSessionLocal.
    """
    global engine, AsyncSessionLocal, DATABASE_URL

    DATABASE_URL = database_url or DATABASE_URL or settings.database_url
    if not DATABASE_URL:
        raise ValueError("DATABASE_URL is required to initialize the database engine")

    clean_url, connect_args = _normalize_db_url(DATABASE_URL)

    engine_kwargs = {"echo": False, "future": True}
    if not clean_url.startswith("sqlite"):
        engine_kwargs.update(
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
        )
    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    engine = create_async_engine(clean_url, **engine_kwargs)
    AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    logger.info("Database engine initialized with driver %s", getattr(engine.dialect, "driver", None))
    return engine


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


async def get_db():
    """
    FastAPI dependency that yields an async DB session.
    init_engine() must have been called before this is used.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database engine is not initialized. Call init_engine() during application startup.")
    async with AsyncSessionLocal() as session:
        yield session
