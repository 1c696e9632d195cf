"""
Environment-driven settings.

Everything is read lazily from `os.environ` so tests can monkeypatch values.
"""

from __future__ import annotations

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def pool_min_size() -> int:
    return max(0, _env_int("DB_POOL_MIN_SIZE", 1))


def pool_max_size() -> int:
    return max(1, _env_int("DB_POOL_MAX_SIZE", 5))


def pool_acquire_timeout() -> float:
    return max(0.0, _env_float("DB_POOL_ACQUIRE_TIMEOUT", 5.0))


def command_timeout() -> float:
    return max(0.0, _env_float("DB_COMMAND_TIMEOUT", 30.0))


def migrations_dir() -> Path:
    raw = os.environ.get("MIGRATIONS_DIR", "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path(__file__).resolve().parent.parent / "migrations"


def api_host() -> str:
    return os.environ.get("API_HOST", "127.0.0.1").strip() or "127.0.0.1"


def api_port() -> int:
    return _env_int("API_PORT", 3000)


def log_level() -> str:
    return os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
