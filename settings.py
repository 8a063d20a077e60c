from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_BACKEND_URL_ENV = "AQUA_BACKEND_URL"
_BACKEND_TIMEOUT_ENV = "AQUA_BACKEND_TIMEOUT"
_CONCURRENCY_ENV = "AQUA_FETCH_CONCURRENCY"
_PAGE_SIZE_ENV = "AQUA_EXPORT_PAGE_SIZE"
_SENSOR_CAP_ENV = "AQUA_EXPORT_SENSOR_CAP"
_TARGET_POINTS_ENV = "AQUA_TARGET_POINTS"
_DEBOUNCE_ENV = "AQUA_DEBOUNCE_MS"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    backend_url: str
    backend_timeout: float
    fetch_concurrency: int
    export_page_size: int
    export_sensor_cap: int
    target_points: int
    debounce_ms: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        backend_url=_read_str_env(_BACKEND_URL_ENV, "http://localhost:3300").rstrip("/"),
        backend_timeout=_read_positive_float(_BACKEND_TIMEOUT_ENV, 30.0),
        fetch_concurrency=_read_positive_int(_CONCURRENCY_ENV, 3),
        export_page_size=_read_positive_int(_PAGE_SIZE_ENV, 1000),
        export_sensor_cap=_read_positive_int(_SENSOR_CAP_ENV, 20),
        target_points=_read_positive_int(_TARGET_POINTS_ENV, 100),
        debounce_ms=_read_positive_int(_DEBOUNCE_ENV, 250),
        log_level=_read_log_level("INFO"),
    )
