"""
exceptions.py — sctimetable Unified Error Hierarchy

All sctimetable-specific exceptions live here. Every layer raises typed
subclasses of TimetableError — never bare Exception.

Import from here, not from individual modules:
    from sctimetable.exceptions import DataSourceError, JobAlreadyExistsError

Hierarchy:
    TimetableError
    ├── ConfigError
    ├── SchedulerError
    │   ├── JobAlreadyExistsError
    │   └── JobExecutionError
    └── DataSourceError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class TimetableError(Exception):
    """Base class for all sctimetable exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Config
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(TimetableError):
    """Raised by Settings.validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Scheduler layer
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerError(TimetableError):
    """Base for job scheduler errors."""


class JobAlreadyExistsError(SchedulerError):
    """A job with the same group and name is already registered."""

    def __init__(self, job_key: str) -> None:
        super().__init__(f"Job '{job_key}' already registered.")
        self.job_key = job_key


class JobExecutionError(SchedulerError):
    """
    A job body raised. Never propagates out of the scheduler — it is attached
    to the JobRun record and logged.
    """

    def __init__(self, job_key: str, cause: BaseException) -> None:
        super().__init__(f"Job '{job_key}' failed: {type(cause).__name__}: {cause}")
        self.job_key = job_key
        self.cause = cause


# ─────────────────────────────────────────────────────────────────────────────
# Data sources
# ─────────────────────────────────────────────────────────────────────────────

class DataSourceError(TimetableError):
    """The timetable store could not be read (missing table, bad row, I/O)."""
