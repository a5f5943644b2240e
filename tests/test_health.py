from fastapi.testclient import TestClient

from addon_catalog.main import app

# no context manager: startup (migrations, storage) is not needed here
client = TestClient(app)


def test_health_endpoint_returns_valid_payload():
    response = client.get("/health")
    assert response.status_code == 200

    payload = response.json()
    assert payload["status"] == "ok"
    assert "timestamp" in payload


def test_metrics_endpoint_is_json():
    response = client.get("/metrics-lite")
    assert response.status_code == 200
    assert set(response.json()) >= {"uptime_seconds", "timestamp", "counters", "histograms"}
