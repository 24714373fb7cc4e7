"""
Database engine and session factory.

Production points DATABASE_URL at the Supabase Postgres instance, where the
tables live in the ``fdic_data`` schema. SQLite has no schemas, so the schema
name is translated away for local and test databases.
"""
from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, make_url
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from webapp.config import DATABASE_URL, DB_SCHEMA

log = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> Engine:
    """Create an engine, mapping the data schema onto SQLite's default schema."""
    if url.startswith("sqlite"):
        db_path = make_url(url).database
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, connect_args={"check_same_thread": False})
        return engine.execution_options(schema_translate_map={DB_SCHEMA: None})
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind: Engine | None = None) -> None:
    """Create tables that do not exist yet (local development only)."""
    from webapp import models  # noqa: F401  registers the mappers

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    log.info("Database tables ensured on %s", bind.url.render_as_string(hide_password=True))
