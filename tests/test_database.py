import pytest

from addon_catalog.database import _normalize_db_url


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("sqlite:////var/lib/catalog.db", "sqlite+aiosqlite:////var/lib/catalog.db"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ("postgres://u:p@db:5432/catalog", "postgresql+asyncpg://u:p@db:5432/catalog"),
    ],
)
def test_normalize_db_url_picks_async_driver(raw, expected):
    url, connect_args = _normalize_db_url(raw)
    assert url == expected
    assert connect_args == {}


def test_normalize_db_url_maps_sslmode_to_connect_args():
    url, connect_args = _normalize_db_url("postgresql://u:p@db/catalog?sslmode=require")
    assert url == "postgresql+asyncpg://u:p@db/catalog"
    assert connect_args == {"ssl": "require"}

    _, disabled = _normalize_db_url("postgresql://u:p@db/catalog?sslmode=disable")
    assert disabled == {}
