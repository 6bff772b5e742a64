"""
scheduler/ — in-process job scheduler

    from sctimetable.scheduler import JobScheduler, JobSpec, CronTrigger, OneShotTrigger
"""

from sctimetable.scheduler.scheduler import (
    DEFAULT_GROUP,
    JobRun,
    JobScheduler,
    JobSpec,
    SchedulerStats,
)
from sctimetable.scheduler.triggers import CronTrigger, OneShotTrigger, Trigger

__all__ = [
    "DEFAULT_GROUP",
    "CronTrigger",
    "JobRun",
    "JobScheduler",
    "JobSpec",
    "OneShotTrigger",
    "SchedulerStats",
    "Trigger",
]
