"""
Application settings for the FDIC Institutions Dashboard.

Values come from config/.env first, then the process environment.
"""
from __future__ import annotations

import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_FILE = PROJECT_ROOT / "config" / ".env"
TAXONOMY_FILE = Path(__file__).resolve().parent / "data" / "field_taxonomy.json"
TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


def _load_env_file(path: Path) -> dict[str, str]:
    env_vars: dict[str, str] = {}
    if path.exists():
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, val = line.split("=", 1)
                env_vars[key.strip()] = val.strip().strip('"').strip("'")
    return env_vars


def _setting(env_vars: dict[str, str], key: str, default: str) -> str:
    return os.environ.get(key, env_vars.get(key, default))


def _as_bool(val: str) -> bool:
    return val.strip().lower() in ("1", "true", "yes", "on")


def _as_int(val: str, default: int) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return default


_env = _load_env_file(ENV_FILE)

DATABASE_URL = _setting(_env, "DATABASE_URL", f"sqlite:///{PROJECT_ROOT / 'data' / 'fdic.db'}")
DB_SCHEMA = _setting(_env, "DB_SCHEMA", "fdic_data")
CACHE_ENABLED = _as_bool(_setting(_env, "CACHE_ENABLED", "true"))
CACHE_DEFAULT_TTL = _as_int(_setting(_env, "CACHE_DEFAULT_TTL", "60"), 60)
CACHE_MAX_ENTRIES = max(1, _as_int(_setting(_env, "CACHE_MAX_ENTRIES", "2048"), 2048))
COMPARISON_WORKERS = max(1, _as_int(_setting(_env, "COMPARISON_WORKERS", "8"), 8))
LOG_LEVEL = _setting(_env, "LOG_LEVEL", "INFO").upper()
