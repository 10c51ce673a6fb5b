# src/task_tracker/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole library (normal "settings layer").
- No secrets required at import time.
- Settings are injectable: the runtime takes a Settings object, tests build their own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ENV_PREFIX = "TRACKER"

BACKEND_SQLITE = "sqlite"
BACKEND_REST = "rest"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    log_to_file: bool

    # ---- Remote store ----
    backend: str
    rest_url: str
    rest_api_key: Optional[str]
    rest_timeout_seconds: float

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Timer core ----
    tick_interval_seconds: float
    placeholder_prefix: str

    @staticmethod
    def from_env() -> "Settings":
        _load_dotenv_if_available()

        app_name = _env(_k("APP_NAME"), "task-tracker") or "task-tracker"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        log_to_file = _env_bool(_k("LOG_TO_FILE"), True)

        backend = _env(_k("BACKEND"), BACKEND_SQLITE).strip().lower() or BACKEND_SQLITE
        if backend not in (BACKEND_SQLITE, BACKEND_REST):
            backend = BACKEND_SQLITE

        # Supabase-style names are accepted as a fallback for the REST endpoint.
        rest_url = (_first_env(_k("REST_URL"), "SUPABASE_URL", default="") or "").strip()
        rest_api_key = _first_env(_k("REST_API_KEY"), "SUPABASE_ANON_KEY", default=None)
        rest_timeout_seconds = max(1.0, _env_float(_k("REST_TIMEOUT_SECONDS"), 10.0))

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/task-tracker"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        # Second granularity is the contract; faster ticks only burn CPU.
        tick_interval_seconds = max(0.05, _env_float(_k("TICK_INTERVAL_SECONDS"), 1.0))
        placeholder_prefix = _env(_k("PLACEHOLDER_PREFIX"), "temp-").strip() or "temp-"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            log_to_file=log_to_file,
            backend=backend,
            rest_url=rest_url,
            rest_api_key=rest_api_key,
            rest_timeout_seconds=rest_timeout_seconds,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            tick_interval_seconds=tick_interval_seconds,
            placeholder_prefix=placeholder_prefix,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them from the environment on first use."""
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
