"""
FDIC Institutions Dashboard - FastAPI application.

Run locally:
  uvicorn webapp.main:app --reload
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from webapp.config import DATABASE_URL, LOG_LEVEL
from webapp.database import init_db
from webapp.routers import admin, comparison, dashboard, institutions

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Postgres tables are managed by the loader; only local SQLite gets created here
    if DATABASE_URL.startswith("sqlite"):
        init_db()
    log.info("FDIC dashboard started")
    yield


app = FastAPI(title="FDIC Institutions Dashboard", lifespan=lifespan)

app.include_router(institutions.router)
app.include_router(dashboard.router)
app.include_router(comparison.router)
app.include_router(admin.router)


@app.get("/")
def index():
    return RedirectResponse("/institutions/dashboard", status_code=302)


@app.get("/health")
def health():
    return {"status": "ok"}
