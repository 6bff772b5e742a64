"""
config/settings.py — sctimetable Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and .env.
Pydantic-powered — all fields are validated and typed.

  - SchedulerConfig bounds concurrency and run-history size
  - TimetableConfig rejects table names that are not plain SQL identifiers
  - LoggingConfig validates the level name
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a numbered list of every problem found
  - load_settings() respects SCTIMETABLE_CONFIG when no explicit path is given

The timezone is not configurable: every schedule and "today" is evaluated
in Asia/Shanghai (see sctimetable.timekeeping.clock.SHANGHAI).
"""

from __future__ import annotations

import os
import re
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sctimetable.exceptions import ConfigError

__all__ = [
    "ConfigError",
    "LoggingConfig",
    "SchedulerConfig",
    "Settings",
    "TimetableConfig",
    "get_settings",
    "load_settings",
]

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_SQL_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerConfig(BaseModel):
    max_concurrent_jobs: int = 3
    history_limit: int = 100
    job_group: str = "time_provider"

    @field_validator("max_concurrent_jobs")
    @classmethod
    def _positive_jobs(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scheduler.max_concurrent_jobs must be >= 1")
        return v

    @field_validator("history_limit")
    @classmethod
    def _positive_history(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scheduler.history_limit must be >= 1")
        return v


class TimetableConfig(BaseModel):
    sqlite_path: str = "./data/sqlite/timetable.db"
    table: str = "school_timetables"

    @field_validator("table")
    @classmethod
    def _plain_identifier(cls, v: str) -> str:
        if not _SQL_IDENTIFIER.match(v):
            raise ValueError(
                f"timetable.table '{v}' is not a plain SQL identifier "
                f"(letters, digits and underscores, not starting with a digit)."
            )
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    sctimetable runtime settings.

    Priority (highest to lowest):
      1. Environment variables (SCTIMETABLE_SCHEDULER__MAX_CONCURRENT_JOBS=…)
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="SCTIMETABLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    timetable: TimetableConfig = Field(default_factory=TimetableConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # config.yaml arrives as init kwargs; environment must still win over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("scheduler", mode="before")
    @classmethod
    def _coerce_scheduler(cls, v: Any) -> Any:
        return SchedulerConfig(**v) if isinstance(v, dict) else v

    @field_validator("timetable", mode="before")
    @classmethod
    def _coerce_timetable(cls, v: Any) -> Any:
        return TimetableConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_max_bytes(self) -> int:
        return self.logging.max_file_size_mb * 1024 * 1024

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        catches what they can't see in isolation.
        """
        errors: list[str] = []

        if not self.scheduler.job_group.strip():
            errors.append("scheduler.job_group must not be empty.")

        if not self.timetable.sqlite_path.strip():
            errors.append("timetable.sqlite_path must not be empty.")
        elif Path(self.timetable.sqlite_path).is_dir():
            errors.append(
                f"timetable.sqlite_path '{self.timetable.sqlite_path}' is a "
                f"directory. Point it at the SQLite database file."
            )

        if self.logging.max_file_size_mb < 1:
            errors.append("logging.max_file_size_mb must be >= 1.")

        if self.logging.backup_count < 0:
            errors.append("logging.backup_count must be >= 0.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nsctimetable startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your environment "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()

_KNOWN_SECTIONS = {"scheduler", "timetable", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. SCTIMETABLE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("SCTIMETABLE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def _build_settings(config_path: str | Path | None) -> Settings:
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
    return Settings(**init_kwargs)


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    instance = _build_settings(config_path)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default path on
    first use. Guarded by _singleton_lock against concurrent first loads.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = _build_settings(None)
    return _singleton
