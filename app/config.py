"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

DEFAULT_NULL_TOKENS: tuple[str, ...] = ("null", "na", "n/a", "none", "nan")

DEFAULT_UNIQUE_ROLES: tuple[str, ...] = (
    "INDICATOR_VALUE",
    "INDICATOR_NAME",
    "TIME",
    "LOCATION",
)


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """
    Read a comma-separated list from environment variables.
    """

    raw_value = _get_optional_str_env(name)
    if raw_value is None:
        return default
    items = tuple(item.strip() for item in raw_value.split(",") if item.strip())
    return items or default


@dataclass(frozen=True)
class AppSettings:
    """
    Process-level settings for the API service.
    """

    log_level: str = "INFO"
    scheduler_enabled: bool = True
    stale_job_sweep_interval_seconds: int = 60


@dataclass(frozen=True)
class ProfilerSettings:
    """
    Runtime settings for file profiling.
    """

    sample_size: int = 5
    ragged_row_tolerance: float = 0.0
    null_tokens: tuple[str, ...] = DEFAULT_NULL_TOKENS


@dataclass(frozen=True)
class MappingSettings:
    """
    Runtime settings for column-to-dimension mapping.
    """

    confidence_threshold: float = 0.6
    fuzzy_threshold: float = 0.84
    ambiguity_margin: float = 1.0
    unique_roles: tuple[str, ...] = DEFAULT_UNIQUE_ROLES
    synonyms_file: str | None = None


@dataclass(frozen=True)
class ProcessingSettings:
    """
    Runtime settings for processing jobs.
    """

    batch_size: int = 1000
    max_batch_size: int = 10000
    timeout_seconds: int = 3600
    max_retries: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    statement_timeout_ms: int = 30000
    stale_job_grace_seconds: int = 300
    default_indicator_code: str | None = None
    log_row_errors: bool = True


@dataclass(frozen=True)
class StorageSettings:
    """
    Upload storage settings.
    """

    root_dir: str = "data/uploads"


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """
    Return cached process-level settings.
    """

    return AppSettings(
        log_level=_get_str_env("LOG_LEVEL", "INFO").upper(),
        scheduler_enabled=_get_bool_env("SCHEDULER_ENABLED", True),
        stale_job_sweep_interval_seconds=max(5, _get_int_env("STALE_JOB_SWEEP_INTERVAL_SECONDS", 60)),
    )


@lru_cache(maxsize=1)
def get_profiler_settings() -> ProfilerSettings:
    """
    Return cached profiler settings from environment variables.
    """

    null_tokens = _get_csv_env("PROFILER_NULL_TOKENS", DEFAULT_NULL_TOKENS)
    return ProfilerSettings(
        sample_size=max(1, _get_int_env("PROFILER_SAMPLE_SIZE", 5)),
        ragged_row_tolerance=min(1.0, max(0.0, _get_float_env("PROFILER_RAGGED_ROW_TOLERANCE", 0.0))),
        null_tokens=tuple(token.lower() for token in null_tokens),
    )


@lru_cache(maxsize=1)
def get_mapping_settings() -> MappingSettings:
    """
    Return cached mapping settings from environment variables.
    """

    unique_roles = _get_csv_env("MAPPING_UNIQUE_ROLES", DEFAULT_UNIQUE_ROLES)
    return MappingSettings(
        confidence_threshold=min(1.0, max(0.0, _get_float_env("MAPPING_CONFIDENCE_THRESHOLD", 0.6))),
        fuzzy_threshold=min(1.0, max(0.0, _get_float_env("MAPPING_FUZZY_THRESHOLD", 0.84))),
        ambiguity_margin=max(0.0, _get_float_env("MAPPING_AMBIGUITY_MARGIN", 1.0)),
        unique_roles=tuple(role.upper() for role in unique_roles),
        synonyms_file=_get_optional_str_env("MAPPING_SYNONYMS_FILE"),
    )


@lru_cache(maxsize=1)
def get_processing_settings() -> ProcessingSettings:
    """
    Return cached processing job settings from environment variables.
    """

    max_batch_size = max(1, _get_int_env("PROCESSING_MAX_BATCH_SIZE", 10000))
    return ProcessingSettings(
        batch_size=min(max_batch_size, max(1, _get_int_env("PROCESSING_BATCH_SIZE", 1000))),
        max_batch_size=max_batch_size,
        timeout_seconds=max(1, _get_int_env("PROCESSING_TIMEOUT_SECONDS", 3600)),
        max_retries=max(0, _get_int_env("PROCESSING_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.0, _get_float_env("PROCESSING_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("PROCESSING_BACKOFF_MULTIPLIER", 2.0)),
        statement_timeout_ms=max(0, _get_int_env("PROCESSING_STATEMENT_TIMEOUT_MS", 30000)),
        stale_job_grace_seconds=max(0, _get_int_env("PROCESSING_STALE_JOB_GRACE_SECONDS", 300)),
        default_indicator_code=_get_optional_str_env("PROCESSING_DEFAULT_INDICATOR_CODE"),
        log_row_errors=_get_bool_env("PROCESSING_LOG_ROW_ERRORS", True),
    )


@lru_cache(maxsize=1)
def get_storage_settings() -> StorageSettings:
    """
    Return upload storage settings.
    """

    return StorageSettings(root_dir=_get_str_env("UPLOAD_ROOT_DIR", "data/uploads"))
