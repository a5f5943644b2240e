import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from addon_catalog import models
from addon_catalog.metrics import metrics
from addon_catalog.migrations import run_startup_migrations
from addon_catalog.schemas import Actor
from addon_catalog.storage import ContentStore


def _make_engine():
    return create_async_engine("sqlite+aiosqlite:///:memory:", future=True)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest_asyncio.fixture
async def raw_engine():
    """Empty in-memory database, no tables."""
    engine = _make_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session():
    engine = _make_engine()
    await run_startup_migrations(engine)

    Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with Session() as sess:
        yield sess

    await engine.dispose()


@pytest.fixture
def store(tmp_path):
    content_store = ContentStore(tmp_path / "storage", max_icon_bytes=1024)
    content_store.initialize()
    return content_store


@pytest_asyncio.fixture
async def actors(session):
    """One account per role, keyed by role name, plus a second developer."""
    users = [
        models.User(username="dev", role="developer"),
        models.User(username="other_dev", role="developer"),
        models.User(username="admin", role="admin"),
        models.User(username="viewer", role="user"),
    ]
    session.add_all(users)
    await session.commit()
    return {
        "developer": Actor(id=users[0].id, role="developer"),
        "other_developer": Actor(id=users[1].id, role="developer"),
        "admin": Actor(id=users[2].id, role="admin"),
        "user": Actor(id=users[3].id, role="user"),
    }


@pytest.fixture
def zip_bytes():
    return b"PK\x03\x04" + b"\x14\x00\x00\x00\x08\x00" + b"manifest.json" * 8


@pytest.fixture
def png_bytes():
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def gif_bytes():
    return b"GIF89a" + b"\x01\x00\x01\x00" + b"\x00" * 16


@pytest.fixture
def svg_bytes():
    return (
        b'<svg xmlns="http://www.w3.org/2000/svg" onload="alert(1)">'
        b"<script>alert(2)</script><rect width=\"4\" height=\"4\"/></svg>"
    )
