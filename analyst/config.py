from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str]
    openai_base_url: Optional[str]
    model_name: str
    fast_model_name: str
    oracle_timeout_sec: int
    rate_limit_max_requests: int
    rate_limit_window_sec: int
    cache_max_size: int
    cache_ttl_sec: int
    hypothesis_max_attempts: int
    hypothesis_backoff_base_sec: float
    hypothesis_backoff_cap_sec: float
    hypothesis_max_concurrency: int
    query_timeout_sec: float
    runs_retention: int
    log_level: str


def load_settings() -> Settings:
    model_name = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_base_url=os.getenv("OPENAI_BASE_URL"),
        model_name=model_name,
        fast_model_name=os.getenv("OPENAI_FAST_MODEL", model_name),
        oracle_timeout_sec=_getenv_int("ORACLE_TIMEOUT_SEC", 30),
        rate_limit_max_requests=_getenv_int("RATE_LIMIT_MAX_REQUESTS", 50),
        rate_limit_window_sec=_getenv_int("RATE_LIMIT_WINDOW_SEC", 3600),
        cache_max_size=_getenv_int("CACHE_MAX_SIZE", 1000),
        cache_ttl_sec=_getenv_int("CACHE_TTL_SEC", 3600),
        hypothesis_max_attempts=_getenv_int("HYPOTHESIS_MAX_ATTEMPTS", 3),
        hypothesis_backoff_base_sec=_getenv_float("HYPOTHESIS_BACKOFF_BASE_SEC", 1.0),
        hypothesis_backoff_cap_sec=_getenv_float("HYPOTHESIS_BACKOFF_CAP_SEC", 10.0),
        hypothesis_max_concurrency=_getenv_int("HYPOTHESIS_MAX_CONCURRENCY", 1),
        query_timeout_sec=_getenv_float("QUERY_TIMEOUT_SEC", 0.0),
        runs_retention=_getenv_int("RUNS_RETENTION", 50),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


settings = load_settings()

_RUNTIME_OVERRIDES: dict[str, Any] = {}


def get_settings() -> Settings:
    if not _RUNTIME_OVERRIDES:
        return settings
    return replace(settings, **_RUNTIME_OVERRIDES)


def update_settings(overrides: dict[str, Any]) -> Settings:
    known = {f.name for f in fields(Settings)}
    for key, value in overrides.items():
        if value is None or key not in known:
            continue
        default = getattr(settings, key)
        if isinstance(default, int):
            _RUNTIME_OVERRIDES[key] = int(value)
        elif isinstance(default, float):
            _RUNTIME_OVERRIDES[key] = float(value)
        else:
            _RUNTIME_OVERRIDES[key] = value
    return get_settings()
