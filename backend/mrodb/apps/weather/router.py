from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response

from ...schemas import envelope
from ...security import Principal, get_current_principal
from . import client, services

router = APIRouter(prefix="/weather", tags=["weather"])


@router.get("")
def current_weather(
    response: Response,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    principal: Principal = Depends(get_current_principal),
):
    data = services.current_conditions(lat, lon)
    response.headers["Cache-Control"] = f"public, max-age={services.CACHE_SECONDS}"
    return envelope(data, provider=client.PROVIDER)
