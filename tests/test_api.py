import base64
import hashlib

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from addon_catalog import database, models, routes_packages
from addon_catalog.auth import create_user_jwt
from addon_catalog.main import app
from addon_catalog.settings import settings
from addon_catalog.storage import ContentStore

API = settings.api_base_path
ZIP = b"PK\x03\x04" + b"\x14\x00" + b"payload" * 16
SVG = b'<svg xmlns="http://www.w3.org/2000/svg"><script>alert(1)</script><rect/></svg>'


@pytest.fixture
def client(tmp_path, monkeypatch):
    store = ContentStore(tmp_path / "storage", max_icon_bytes=settings.max_icon_bytes)
    monkeypatch.setattr(routes_packages, "_content_store", store)
    database.init_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")

    # entering the client runs startup: directories, migrations, seeds
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth(client, tmp_path):
    """Bearer headers per role, for users written straight into the test database."""
    sync_engine = create_engine(f"sqlite:///{tmp_path / 'api.db'}")
    with Session(sync_engine) as session:
        users = {
            "developer": models.User(username="dev", role="developer"),
            "other_developer": models.User(username="dev2", role="developer"),
            "user": models.User(username="viewer", role="user"),
        }
        session.add_all(users.values())
        session.commit()
        headers = {
            key: {"Authorization": f"Bearer {create_user_jwt(user.id)}"}
            for key, user in users.items()
        }
    sync_engine.dispose()
    return headers


def _upload(client, headers, name="Foo", archive=ZIP, icon=None, **form):
    files = {"file": ("addon.mcaddon", archive, "application/octet-stream")}
    if icon is not None:
        files["icon"] = ("icon.svg", icon, "image/svg+xml")
    return client.post(f"{API}/packages", data={"name": name, **form}, files=files, headers=headers)


def test_categories_are_seeded(client):
    response = client.get(f"{API}/categories")
    assert response.status_code == 200
    slugs = {c["slug"] for c in response.json()}
    assert len(slugs) == 22
    assert {"adventure", "world-generation", "permissions"} <= slugs


def test_upload_requires_valid_token(client, auth):
    missing = _upload(client, {})
    assert missing.status_code in (401, 403)

    bad = _upload(client, {"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_upload_then_fetch(client, auth):
    response = _upload(client, auth["developer"], description="Adds swords", category="equipment")
    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "Foo"
    assert body["version"] == "1.0.0"
    assert body["file_hash"] == hashlib.sha256(ZIP).hexdigest()
    assert body["category"]["slug"] == "equipment"

    fetched = client.get(f"{API}/packages/Foo")
    assert fetched.status_code == 200
    assert fetched.json()["author"]["username"] == "dev"

    assert client.get(f"{API}/packages/Nope").status_code == 404


@pytest.mark.parametrize(
    "role, kwargs, expected",
    [
        ("user", {}, 403),
        ("developer", {"archive": b"not a zip"}, 400),
        ("developer", {"name": "bad name"}, 400),
        ("developer", {"kofiUrl": "https://example.com/me"}, 400),
        ("developer", {"category": "unknown"}, 400),
    ],
)
def test_upload_error_mapping(client, auth, role, kwargs, expected):
    response = _upload(client, auth[role], **kwargs)
    assert response.status_code == expected
    assert "detail" in response.json()


def test_duplicate_upload_conflicts(client, auth):
    assert _upload(client, auth["developer"]).status_code == 201
    assert _upload(client, auth["other_developer"]).status_code == 409


def test_oversized_archive_is_rejected(client, auth, monkeypatch):
    monkeypatch.setattr(settings, "max_archive_bytes", 16)
    response = _upload(client, auth["developer"])
    assert response.status_code == 413


def test_download_streams_latest_archive_and_counts(client, auth):
    package_id = _upload(client, auth["developer"]).json()["id"]

    response = client.get(f"{API}/packages/Foo/download")
    assert response.status_code == 200
    assert response.content == ZIP
    assert response.headers["content-disposition"] == 'attachment; filename="Foo.mcaddon"'

    daily = client.get(f"{API}/packages/{package_id}/downloads/daily", params={"days": 2}).json()
    assert daily["total"] == 1
    assert [d["count"] for d in daily["series"]] == [1, 0]

    monthly = client.get(f"{API}/packages/{package_id}/downloads/monthly").json()
    assert monthly["series"][0]["count"] == 1

    assert client.get(f"{API}/packages/Foo").json()["downloads"] == 1
    assert client.get(f"{API}/packages/Missing/download").status_code == 404


def test_download_stats_validation(client, auth):
    package_id = _upload(client, auth["developer"]).json()["id"]

    assert client.get(f"{API}/packages/{package_id}/downloads/daily", params={"days": 0}).status_code == 400
    assert client.get(f"{API}/packages/{package_id}/downloads/monthly", params={"months": 0}).status_code == 400
    assert client.get(f"{API}/packages/9999/downloads/daily").status_code == 404


def test_update_distinguishes_absent_from_null(client, auth):
    headers = auth["developer"]
    package_id = _upload(client, headers).json()["id"]
    url = f"{API}/packages/{package_id}"

    set_link = client.put(url, json={"kofiUrl": "https://ko-fi.com/me"}, headers=headers)
    assert set_link.status_code == 200
    assert set_link.json()["kofi_url"] == "https://ko-fi.com/me"

    untouched = client.put(url, json={"description": "new"}, headers=headers)
    assert untouched.json()["kofi_url"] == "https://ko-fi.com/me"

    cleared = client.put(url, json={"kofiUrl": None}, headers=headers)
    assert cleared.json()["kofi_url"] is None
    assert cleared.json()["description"] == "new"


def test_update_with_base64_archive_and_ownership(client, auth):
    headers = auth["developer"]
    package_id = _upload(client, headers).json()["id"]
    url = f"{API}/packages/{package_id}"
    new_archive = ZIP + b"v2"

    forbidden = client.put(url, json={"description": "x"}, headers=auth["other_developer"])
    assert forbidden.status_code == 403

    invalid = client.put(url, json={"fileBase64": "***"}, headers=headers)
    assert invalid.status_code == 400

    updated = client.put(
        url,
        json={"fileBase64": base64.b64encode(new_archive).decode("ascii"), "version": "1.1.0"},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["file_hash"] == hashlib.sha256(new_archive).hexdigest()
    assert updated.json()["version"] == "1.1.0"
    assert client.get(f"{API}/packages/Foo/download").content == new_archive

    assert client.put(f"{API}/packages/9999", json={}, headers=headers).status_code == 404


def test_delete_package(client, auth):
    headers = auth["developer"]
    package_id = _upload(client, headers, icon=SVG).json()["id"]
    url = f"{API}/packages/{package_id}"

    assert client.delete(url, headers=auth["other_developer"]).status_code == 403

    response = client.delete(url, headers=headers)
    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert client.get(f"{API}/packages/Foo").status_code == 404
    assert client.get(f"/icons/{package_id}.svg").status_code == 404


def test_svg_icon_is_sanitized_and_served_with_csp(client, auth):
    body = _upload(client, auth["developer"], icon=SVG).json()
    assert body["icon_url"] == f"/icons/{body['id']}.svg"

    response = client.get(body["icon_url"])
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("image/svg+xml")
    assert "default-src 'none'" in response.headers["content-security-policy"]
    assert response.headers["x-content-type-options"] == "nosniff"
    assert b"<script" not in response.content

    assert client.get("/icons/missing.png").status_code == 404


def test_metrics_lite_reports_counters(client, auth):
    _upload(client, auth["developer"])
    payload = client.get("/metrics-lite").json()
    assert payload["counters"]["packages_created"] == 1
    assert "uptime_seconds" in payload
