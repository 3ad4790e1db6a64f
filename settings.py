from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_NAME_ENV = "UPLOAD_STORE_NAME"
_STORE_ROOT_ENV = "UPLOAD_STORE_ROOT_PATH"
_TABLE_NAME_ENV = "RESULTS_TABLE_NAME"
_TABLE_PATH_ENV = "RESULTS_PERSISTENCE_PATH"
_WORKER_COUNT_ENV = "PROCESSOR_WORKER_COUNT"
_WINDOW_START_ENV = "OVERNIGHT_WINDOW_START"
_WINDOW_END_ENV = "OVERNIGHT_WINDOW_END"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_WINDOW_START = 1
DEFAULT_WINDOW_END = 4


@dataclass(frozen=True)
class Settings:
    store_name: str
    store_root_path: Optional[str]
    table_name: str
    table_persistence_path: Optional[str]
    processor_workers: int
    window_start_hour: int
    window_end_hour: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_int_env(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None:
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return int(candidate)
    except ValueError:
        return None


def _read_worker_count(default: int) -> int:
    parsed = _read_int_env(_WORKER_COUNT_ENV)
    if parsed is None:
        return default
    return parsed if parsed > 0 else default


def _read_window() -> tuple[int, int]:
    start = _read_int_env(_WINDOW_START_ENV)
    end = _read_int_env(_WINDOW_END_ENV)
    start = DEFAULT_WINDOW_START if start is None else start
    end = DEFAULT_WINDOW_END if end is None else end
    if not (0 <= start <= end <= 23):
        return DEFAULT_WINDOW_START, DEFAULT_WINDOW_END
    return start, end


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
    window_start, window_end = _read_window()
    return Settings(
        store_name=_read_str_env(_STORE_NAME_ENV, "uploads"),
        store_root_path=_read_optional_env(_STORE_ROOT_ENV, "./tmp/uploads"),
        table_name=_read_str_env(_TABLE_NAME_ENV, "threshold_results"),
        table_persistence_path=_read_optional_env(_TABLE_PATH_ENV, "./tmp/results.json"),
        processor_workers=_read_worker_count(4),
        window_start_hour=window_start,
        window_end_hour=window_end,
        log_level=_read_log_level("INFO"),
    )
