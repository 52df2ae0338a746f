from __future__ import annotations

import os

DEFAULT_DATABASE_URL = "sqlite:///./finance.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_MAX_PAYLOAD_BYTES = 5 * 1024 * 1024
DEFAULT_SAVE_DEBOUNCE_SECONDS = 0.8
DEFAULT_RECURRING_INTERVAL_SECONDS = 60 * 60
DEFAULT_LOCAL_STORAGE_PATH = "finance-storage.json"


def database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def frontend_origin() -> str:
    return os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN)


def cloud_base_url() -> str:
    return os.getenv("CLOUD_BASE_URL", "http://localhost:8000").rstrip("/")


def local_storage_path() -> str:
    return os.getenv("LOCAL_STORAGE_PATH", DEFAULT_LOCAL_STORAGE_PATH)


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"


def max_payload_bytes() -> int:
    return _int_from_env("MAX_PAYLOAD_BYTES", DEFAULT_MAX_PAYLOAD_BYTES)


def save_debounce_seconds() -> float:
    return _float_from_env("SAVE_DEBOUNCE_SECONDS", DEFAULT_SAVE_DEBOUNCE_SECONDS)


def recurring_interval_seconds() -> float:
    return _float_from_env("RECURRING_INTERVAL_SECONDS", DEFAULT_RECURRING_INTERVAL_SECONDS)


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default
