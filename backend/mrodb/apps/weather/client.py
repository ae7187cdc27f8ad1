"""
WeatherAPI.com client.

Outbound calls use a bounded timeout and a small number of retries with
a linearly growing pause. Only network failures are retried; an HTTP
error response from the provider is final.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import time
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import urlencode

from ...errors import ExternalServiceError

logger = logging.getLogger(__name__)

WEATHER_API_BASE_URL = os.getenv("WEATHER_API_BASE_URL", "https://api.weatherapi.com/v1").rstrip("/")
TIMEOUT_SECONDS = float(os.getenv("WEATHER_TIMEOUT_SECONDS", "8"))
MAX_RETRIES = int(os.getenv("WEATHER_MAX_RETRIES", "2"))
BACKOFF_SECONDS = float(os.getenv("WEATHER_BACKOFF_SECONDS", "1"))

PROVIDER = "WeatherAPI.com"


class WeatherServiceError(ExternalServiceError):
    code = "weather_service_error"

    def __init__(self, message: str, *, status_code: int = 500, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


def api_key() -> str:
    key = os.getenv("WEATHER_API_KEY", "").strip()
    if not key:
        raise WeatherServiceError("Weather API key not configured", status_code=500)
    return key


def _fetch_json(endpoint: str, params: dict) -> dict:
    url = f"{WEATHER_API_BASE_URL}/{endpoint}?{urlencode(params)}"
    req = urllib.request.Request(url, method="GET")
    req.add_header("Accept", "application/json")

    attempt = 0
    while True:
        try:
            with urllib.request.urlopen(req, timeout=TIMEOUT_SECONDS) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            logger.warning("Weather provider returned %s for %s", exc.code, endpoint)
            if exc.code in (401, 403):
                raise WeatherServiceError("Invalid weather API key", status_code=401) from exc
            raise WeatherServiceError(
                f"Failed to fetch weather data: {exc.code}", status_code=502
            ) from exc
        except (urllib.error.URLError, socket.timeout, TimeoutError) as exc:
            timed_out = isinstance(exc, (socket.timeout, TimeoutError)) or isinstance(
                getattr(exc, "reason", None), (socket.timeout, TimeoutError)
            )
            if attempt < MAX_RETRIES:
                attempt += 1
                logger.info("Retrying %s (%s attempts remaining)", endpoint, MAX_RETRIES - attempt + 1)
                time.sleep(BACKOFF_SECONDS * attempt)
                continue
            if timed_out:
                raise WeatherServiceError(
                    "Weather service timeout - please try again", status_code=408
                ) from exc
            raise WeatherServiceError("Unable to connect to weather service", status_code=503) from exc
        except ValueError as exc:
            raise WeatherServiceError("Weather service returned invalid data", status_code=502) from exc


def fetch_current(lat: float, lon: float) -> dict:
    return _fetch_json("current.json", {"key": api_key(), "q": f"{lat},{lon}", "aqi": "no"})


def fetch_rain_probability(lat: float, lon: float) -> Optional[int]:
    """Today's chance of rain, or None when the forecast cannot be fetched."""
    try:
        data = _fetch_json(
            "forecast.json",
            {"key": api_key(), "q": f"{lat},{lon}", "days": 1, "aqi": "no", "alerts": "no"},
        )
    except WeatherServiceError as exc:
        logger.warning("Forecast unavailable: %s", exc.message)
        return None
    try:
        return data["forecast"]["forecastday"][0]["day"]["daily_chance_of_rain"]
    except (KeyError, IndexError, TypeError):
        return None
