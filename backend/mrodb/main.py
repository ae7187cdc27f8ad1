# backend/mrodb/main.py
import logging
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import models  # noqa: F401  registers every table
from .error_handlers import register_error_handlers

from .apps.accounts.router import auth_router as accounts_auth_router
from .apps.accounts.router import router as accounts_router
from .apps.activity.router import router as activity_router
from .apps.audits.router import router as audits_router
from .apps.flight_records.router import router as flight_records_router
from .apps.publications.router import router as publications_router
from .apps.sms_reports.router import router as sms_reports_router
from .apps.stock_inventory.router import router as stock_inventory_router
from .apps.weather.router import router as weather_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "info").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://localhost:5173",
    ]


app = FastAPI(title="MRO Portal API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "MRO Portal backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(accounts_auth_router)
app.include_router(accounts_router)
app.include_router(activity_router)
app.include_router(flight_records_router)
app.include_router(publications_router)
app.include_router(sms_reports_router)
app.include_router(audits_router)
app.include_router(stock_inventory_router)
app.include_router(weather_router)
