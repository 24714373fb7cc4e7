"""
FastAPI dependencies for the FDIC Institutions Dashboard.
"""
from __future__ import annotations

from webapp.config import CACHE_DEFAULT_TTL, CACHE_ENABLED, CACHE_MAX_ENTRIES
from webapp.database import SessionLocal
from webapp.services.cache import NullCache, TTLCache
from webapp.services.field_tree import Section, load_taxonomy

_cache: TTLCache | NullCache = (
    TTLCache(default_ttl=CACHE_DEFAULT_TTL, max_entries=CACHE_MAX_ENTRIES) if CACHE_ENABLED else NullCache()
)


def get_db():
    """Yields a DB session, auto-closes on completion."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Session factory for code that fans out across threads (one session per task)."""
    return SessionLocal


def get_cache() -> TTLCache | NullCache:
    """Process-wide query cache."""
    return _cache


def get_taxonomy() -> tuple[Section, ...]:
    return load_taxonomy()
