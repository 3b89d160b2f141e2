from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env at import so env vars are available early
load_dotenv()


class RawSettings(BaseModel):
    # Remote system
    API_BASE: str | None = None
    USERNAME: str | None = None
    PASSWORD: str | None = None

    # Local store + endpoint layout
    DB_PATH: str = "invsync.sqlite3"
    CONFIG_PATH: str = "invsync.config.json"

    # Timeouts (seconds)
    HTTP_TIMEOUT: float = 30
    AUTH_TIMEOUT: float = 10
    HISTORY_TIMEOUT: float = 60
    AUTH_RETRY_WAIT: float = 1.0

    # Reconciliation defaults
    WAREHOUSE_ID: str = "WH-001"
    SKU_PREFIX: str = "ARTA"
    DEFAULT_UNIT: str = "Pcs"
    HISTORY_MISS_LOG_LIMIT: int = 5


class SettingsStrict(RawSettings):
    API_BASE: str
    USERNAME: str
    PASSWORD: str


_cache: RawSettings | None = None


def _read_env_dict() -> dict:
    env = {
        "API_BASE": os.getenv("INVSYNC_API_BASE"),
        "USERNAME": os.getenv("INVSYNC_USERNAME"),
        "PASSWORD": os.getenv("INVSYNC_PASSWORD"),
        "DB_PATH": os.getenv("INVSYNC_DB", "invsync.sqlite3"),
        "CONFIG_PATH": os.getenv("INVSYNC_CONFIG", "invsync.config.json"),
        "HTTP_TIMEOUT": os.getenv("INVSYNC_HTTP_TIMEOUT"),
        "AUTH_TIMEOUT": os.getenv("INVSYNC_AUTH_TIMEOUT"),
        "HISTORY_TIMEOUT": os.getenv("INVSYNC_HISTORY_TIMEOUT"),
        "AUTH_RETRY_WAIT": os.getenv("INVSYNC_AUTH_RETRY_WAIT"),
        "WAREHOUSE_ID": os.getenv("INVSYNC_WAREHOUSE_ID"),
        "SKU_PREFIX": os.getenv("INVSYNC_SKU_PREFIX"),
        "DEFAULT_UNIT": os.getenv("INVSYNC_DEFAULT_UNIT"),
        "HISTORY_MISS_LOG_LIMIT": os.getenv("INVSYNC_HISTORY_MISS_LOG_LIMIT"),
    }
    # Unset tuning vars fall back to model defaults
    required = {"API_BASE", "USERNAME", "PASSWORD"}
    return {k: v for k, v in env.items() if k in required or v not in (None, "")}


def get_settings() -> RawSettings:
    global _cache
    if _cache is None:
        _cache = RawSettings(**_read_env_dict())
    return _cache


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the env."""
    global _cache
    _cache = None


def require_settings() -> SettingsStrict:
    """Return validated settings; raises ValidationError if any required are missing."""
    data = _read_env_dict()
    return SettingsStrict(**data)


def missing_required_keys() -> list[str]:
    """Return list of missing required env keys for user-friendly errors."""
    required = [
        "INVSYNC_API_BASE",
        "INVSYNC_USERNAME",
        "INVSYNC_PASSWORD",
    ]
    return [k for k in required if os.getenv(k) in (None, "")]
