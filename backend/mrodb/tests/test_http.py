from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from mrodb.apps.weather import services as weather_services
from mrodb.main import app
from mrodb.security import get_current_principal


@pytest.fixture()
def client(tenants):
    app.dependency_overrides[get_current_principal] = lambda: tenants["principals"]["alpha_tech"]
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


def test_health_endpoints():
    client = TestClient(app)

    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").json()["status"] == "ok"


def test_missing_token_gets_the_failure_envelope():
    response = TestClient(app).get("/users/me")

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "message": "Authentication required",
        "error": "unauthenticated",
    }


def test_weather_sets_cache_header(client, monkeypatch):
    monkeypatch.setattr(weather_services, "current_conditions", lambda lat, lon: {"location": "Santo Domingo"})

    response = client.get("/weather")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, max-age=300"
    assert response.json() == {"success": True, "data": {"location": "Santo Domingo"}, "provider": "WeatherAPI.com"}


def test_app_errors_map_to_their_status(client):
    response = client.get("/weather", params={"lat": 95})

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert response.json()["message"] == "Invalid coordinates provided"


def test_request_validation_is_reported_as_400(client):
    response = client.get("/weather", params={"lat": "north"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["field"] == "lat"


def test_unexpected_errors_include_details_outside_production(client, monkeypatch):
    def broken(lat, lon):
        raise RuntimeError("provider exploded")

    monkeypatch.setattr(weather_services, "current_conditions", broken)

    response = client.get("/weather")

    assert response.status_code == 500
    assert response.json()["error"] == "unexpected_error"
    assert response.json()["details"] == "RuntimeError: provider exploded"

    monkeypatch.setenv("APP_ENV", "production")
    assert "details" not in client.get("/weather").json()
