from __future__ import annotations

from typing import Optional

from ...errors import ValidationError
from . import client

DEFAULT_LAT = 18.4861
DEFAULT_LON = -69.9312
CACHE_SECONDS = 300


def validate_coordinates(lat: Optional[float], lon: Optional[float]) -> tuple:
    lat = DEFAULT_LAT if lat is None else lat
    lon = DEFAULT_LON if lon is None else lon
    if lat != lat or lon != lon or not -90 <= lat <= 90 or not -180 <= lon <= 180:
        raise ValidationError("Invalid coordinates provided", field="lat")
    return lat, lon


def _rounded(value, fallback=0) -> int:
    if value is None:
        value = fallback
    return int(round(value or 0))


def current_conditions(lat: Optional[float] = None, lon: Optional[float] = None) -> dict:
    lat, lon = validate_coordinates(lat, lon)
    payload = client.fetch_current(lat, lon)
    location = payload.get("location") or {}
    current = payload.get("current") or {}
    condition = current.get("condition") or {}

    return {
        "location": location.get("name"),
        "region": location.get("region"),
        "country": location.get("country"),
        "timezone": location.get("tz_id"),
        "temperature": _rounded(current.get("temp_c")),
        "temperature_f": _rounded(current.get("temp_f")),
        "feels_like": _rounded(current.get("feelslike_c")),
        "feels_like_f": _rounded(current.get("feelslike_f")),
        "humidity": current.get("humidity"),
        "rain_probability": client.fetch_rain_probability(lat, lon),
        "description": (condition.get("text") or "").lower(),
        "condition_text": condition.get("text"),
        "condition_code": condition.get("code"),
        "icon": condition.get("icon"),
        "is_day": current.get("is_day"),
        "wind_speed": _rounded(current.get("wind_kph")),
        "wind_mph": _rounded(current.get("wind_mph")),
        "wind_direction": current.get("wind_degree"),
        "wind_dir": current.get("wind_dir"),
        "gust_kph": _rounded(current.get("gust_kph")),
        "gust_mph": _rounded(current.get("gust_mph")),
        "pressure": _rounded(current.get("pressure_mb")),
        "pressure_in": current.get("pressure_in"),
        "precip_mm": current.get("precip_mm"),
        "precip_in": current.get("precip_in"),
        "cloud": current.get("cloud"),
        "visibility_km": current.get("vis_km"),
        "visibility_miles": current.get("vis_miles"),
        "uv": current.get("uv"),
        "windchill_c": _rounded(current.get("windchill_c"), current.get("temp_c")),
        "heatindex_c": _rounded(current.get("heatindex_c"), current.get("temp_c")),
        "dewpoint_c": _rounded(current.get("dewpoint_c")),
        "last_updated": current.get("last_updated"),
        "last_updated_epoch": current.get("last_updated_epoch"),
    }
