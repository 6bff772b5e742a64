"""
service/time_provider.py — TimeProviderService

The bot may run for longer than a semester, so every time-dependent fact is
cached here and refreshed by scheduled jobs instead of being recomputed per
request:

  - current_year          year_updater,               Jan 1 00:00:10
  - current_semester      semester_updater,           Feb 15 and Aug 15 00:00:10
  - current_week_period   school_week_period_updater, every Monday 00:00:10
                          (per institution — each school numbers weeks differently)

Each recurring job also has a one-shot twin that runs at startup, so the
state is populated before the first scheduled tick. All times are
Asia/Shanghai.

Usage::

    service = TimeProviderService.from_settings(settings, source)
    await service.start()
    service.week_period_of(school_id)
    await service.immediate_update_school_week_period()   # after adding a school
"""

from __future__ import annotations

import threading
import uuid
from datetime import date, datetime
from typing import Callable, Optional

from sctimetable.observability.logger import get_logger
from sctimetable.scheduler import CronTrigger, JobScheduler, JobSpec, OneShotTrigger
from sctimetable.timekeeping import clock, week_period
from sctimetable.timekeeping.clock import Semester
from sctimetable.timetable.source import TimetableSource

log = get_logger(__name__)

YEAR_UPDATER = "year_updater"
SEMESTER_UPDATER = "semester_updater"
SCHOOL_WEEK_PERIOD_UPDATER = "school_week_period_updater"
IMMEDIATE_SCHOOL_WEEK_PERIOD_UPDATER = "immediate_school_week_period_updater"

YEAR_TRIGGER = CronTrigger(second="10", minute="0", hour="0", day="1", month="1")
SEMESTER_TRIGGER = CronTrigger(second="10", minute="0", hour="0", day="15", month="2,8")
SCHOOL_WEEK_PERIOD_TRIGGER = CronTrigger(second="10", minute="0", hour="0", day_of_week="mon")


# ─────────────────────────────────────────────────────────────────────────────
# TimeState
# ─────────────────────────────────────────────────────────────────────────────

class TimeState:
    """
    The cached facts. Every read and write holds the lock, so no single field
    or map entry is ever torn. Year and semester are written by different jobs
    and may be momentarily inconsistent with each other.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._year = 0
        self._semester: Optional[Semester] = None
        self._week_period: dict[int, int] = {}

    @property
    def year(self) -> int:
        with self._lock:
            return self._year

    @property
    def semester(self) -> Optional[Semester]:
        with self._lock:
            return self._semester

    @property
    def week_period(self) -> dict[int, int]:
        """Snapshot copy; mutating it does not touch the state."""
        with self._lock:
            return dict(self._week_period)

    def week_period_of(self, institution_id: int) -> Optional[int]:
        with self._lock:
            return self._week_period.get(institution_id)

    def set_year(self, value: int) -> None:
        with self._lock:
            self._year = value

    def set_semester(self, value: Semester) -> None:
        with self._lock:
            self._semester = value

    def replace_week_periods(self, weeks: dict[int, int]) -> None:
        """Remove-then-insert each institution's entry. Entries not in ``weeks`` are kept."""
        with self._lock:
            for institution_id, week in weeks.items():
                self._week_period.pop(institution_id, None)
                self._week_period[institution_id] = week


# ─────────────────────────────────────────────────────────────────────────────
# TimeProviderService
# ─────────────────────────────────────────────────────────────────────────────

class TimeProviderService:

    def __init__(
        self,
        scheduler: JobScheduler,
        source: TimetableSource,
        state: Optional[TimeState] = None,
        *,
        group: str = "time_provider",
        now: Callable[[], datetime] = clock.now,
    ) -> None:
        self.scheduler = scheduler
        self.state = state if state is not None else TimeState()
        self._source = source
        self._group = group
        self._now = now
        self._started = False

    @classmethod
    def from_settings(cls, settings, source: TimetableSource) -> "TimeProviderService":
        return cls(
            JobScheduler.from_settings(settings),
            source,
            group=settings.scheduler.job_group,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def _startup_jobs(self) -> list[JobSpec]:
        g = self._group
        return [
            # Scheduled
            JobSpec(YEAR_UPDATER, YEAR_TRIGGER, self.update_year, g),
            JobSpec(SEMESTER_UPDATER, SEMESTER_TRIGGER, self.update_semester, g),
            JobSpec(SCHOOL_WEEK_PERIOD_UPDATER, SCHOOL_WEEK_PERIOD_TRIGGER,
                    self.update_school_week_period, g),
            # Immediate start once
            JobSpec(f"{YEAR_UPDATER}_startup", OneShotTrigger(), self.update_year, g),
            JobSpec(f"{SEMESTER_UPDATER}_startup", OneShotTrigger(), self.update_semester, g),
            JobSpec(f"{SCHOOL_WEEK_PERIOD_UPDATER}_startup", OneShotTrigger(),
                    self.update_school_week_period, g),
        ]

    async def start(self) -> None:
        """
        Register the six jobs and start the scheduler. After stop(), the cron
        jobs are still registered and only the startup one-shots are re-added.
        """
        if self._started:
            log.warning("time_provider.already_started")
            return
        jobs = [job for job in self._startup_jobs() if not self.scheduler.has_job(job.key)]
        for job in jobs:
            self.scheduler.add_job(job)
        await self.scheduler.start()
        self._started = True
        log.info("time_provider.started", jobs=[job.name for job in jobs])

    async def stop(self) -> None:
        await self.scheduler.stop()
        self._started = False

    async def immediate_update_school_week_period(self) -> str:
        """
        Queue one extra week-period update to run right away, independent of
        the Monday schedule. Returns the job key.
        """
        name = f"{IMMEDIATE_SCHOOL_WEEK_PERIOD_UPDATER}_{uuid.uuid4().hex[:8]}"
        job = JobSpec(name, OneShotTrigger(), self.update_school_week_period, self._group)
        self.scheduler.add_job(job)
        await self.scheduler.start()
        return job.key

    # ── Job bodies ────────────────────────────────────────────────────────────

    def update_year(self) -> None:
        self.state.set_year(clock.year(self._now()))
        log.info("time_provider.year_updated", current_year=self.state.year)

    def update_semester(self) -> None:
        self.state.set_semester(clock.semester(self._now()))
        log.info("time_provider.semester_updated", current_semester=int(self.state.semester))

    async def update_school_week_period(self) -> None:
        # Fetch and compute everything first; a failure leaves the map untouched.
        records = await self._source.list_all()
        today = self._now().date()
        weeks = {
            r.institution_id: week_period.current_week(
                r.reference_add_date, r.reference_week_at_add, today
            )
            for r in records
        }
        self.state.replace_week_periods(weeks)
        log.info("time_provider.week_period_updated", institutions=len(weeks))

    # ── Read accessors ────────────────────────────────────────────────────────

    @property
    def current_year(self) -> int:
        return self.state.year

    @property
    def current_semester(self) -> Optional[Semester]:
        return self.state.semester

    @property
    def current_week_period(self) -> dict[int, int]:
        return self.state.week_period

    def week_period_of(self, institution_id: int) -> Optional[int]:
        return self.state.week_period_of(institution_id)

    @property
    def current_semester_begin_year(self) -> int:
        return clock.semester_begin_year(self.state.year, self.state.semester)

    @property
    def current_time_stamp(self) -> date:
        return self._now().date()
