from __future__ import annotations

import io
import json
import urllib.error
import urllib.request

import pytest

from mrodb.apps.weather import client, services
from mrodb.errors import ValidationError

CURRENT = {
    "location": {"name": "Santo Domingo", "region": "Distrito Nacional", "country": "Dominican Republic", "tz_id": "America/Santo_Domingo"},
    "current": {
        "temp_c": 29.6,
        "temp_f": 85.3,
        "feelslike_c": 33.4,
        "feelslike_f": 92.1,
        "humidity": 70,
        "condition": {"text": "Partly cloudy", "icon": "//cdn/116.png", "code": 1003},
        "wind_kph": 18.7,
        "wind_degree": 90,
        "pressure_mb": 1014.0,
        "is_day": 1,
    },
}
FORECAST = {"forecast": {"forecastday": [{"day": {"daily_chance_of_rain": 40}}]}}


class _Response(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


@pytest.fixture()
def provider(monkeypatch):
    """Routes outbound calls to canned payloads; entries may be exceptions."""
    monkeypatch.setenv("WEATHER_API_KEY", "test-key")
    monkeypatch.setattr(client.time, "sleep", lambda seconds: None)
    calls = []
    responses = {"current.json": [CURRENT], "forecast.json": [FORECAST]}

    def fake_urlopen(req, timeout=None):
        endpoint = req.full_url.split("?")[0].rsplit("/", 1)[-1]
        calls.append((endpoint, req.full_url, timeout))
        queue = responses[endpoint]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return _Response(json.dumps(outcome).encode("utf-8"))

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    return {"calls": calls, "responses": responses}


def test_defaults_to_santo_domingo_and_maps_fields(provider):
    data = services.current_conditions()

    endpoint, url, timeout = provider["calls"][0]
    assert endpoint == "current.json"
    assert "q=18.4861%2C-69.9312" in url
    assert timeout == client.TIMEOUT_SECONDS
    assert data["location"] == "Santo Domingo"
    assert data["temperature"] == 30
    assert data["feels_like"] == 33
    assert data["description"] == "partly cloudy"
    assert data["wind_speed"] == 19
    assert data["rain_probability"] == 40


@pytest.mark.parametrize("lat, lon", [(91, 0), (0, -181), (float("nan"), 0)])
def test_out_of_range_coordinates_are_rejected_before_any_call(provider, lat, lon):
    with pytest.raises(ValidationError):
        services.current_conditions(lat, lon)

    assert provider["calls"] == []


def test_forecast_failure_degrades_to_null_rain_probability(provider):
    provider["responses"]["forecast.json"] = [urllib.error.URLError("connection refused")]

    data = services.current_conditions(18.5, -69.9)

    assert data["rain_probability"] is None
    assert data["location"] == "Santo Domingo"


def test_network_errors_are_retried_then_succeed(provider):
    provider["responses"]["current.json"] = [urllib.error.URLError("reset"), CURRENT]

    data = services.current_conditions()

    assert data["location"] == "Santo Domingo"
    assert [c[0] for c in provider["calls"]].count("current.json") == 2


def test_timeouts_exhaust_retries_with_408(provider):
    provider["responses"]["current.json"] = [TimeoutError("timed out")]

    with pytest.raises(client.WeatherServiceError) as excinfo:
        services.current_conditions()

    assert excinfo.value.status_code == 408
    assert [c[0] for c in provider["calls"]].count("current.json") == client.MAX_RETRIES + 1


def test_rejected_key_is_not_retried(provider):
    provider["responses"]["current.json"] = [
        urllib.error.HTTPError("https://example.test", 403, "Forbidden", {}, None)
    ]

    with pytest.raises(client.WeatherServiceError) as excinfo:
        services.current_conditions()

    assert excinfo.value.status_code == 401
    assert len(provider["calls"]) == 1


def test_missing_api_key_fails_without_calling_out(provider, monkeypatch):
    monkeypatch.delenv("WEATHER_API_KEY")

    with pytest.raises(client.WeatherServiceError) as excinfo:
        services.current_conditions()

    assert excinfo.value.status_code == 500
    assert provider["calls"] == []
