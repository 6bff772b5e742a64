"""
scheduler/triggers.py — Trigger variants

    Trigger = OneShotTrigger | CronTrigger

OneShotTrigger fires once, as soon as the scheduler is (or already was)
started. CronTrigger fires on every instant matching its fields, evaluated
in Asia/Shanghai. Fields use croniter syntax: ``*``, lists (``2,8``),
ranges (``1-5``), steps (``*/15``), and names for months and weekdays
(``mon``, ``jan``). Day-of-week numbering is 0 = Sunday … 6 = Saturday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from croniter import croniter

from sctimetable.timekeeping.clock import SHANGHAI


@dataclass(frozen=True)
class OneShotTrigger:

    def __str__(self) -> str:
        return "once"


@dataclass(frozen=True)
class CronTrigger:
    second: str = "0"
    minute: str = "*"
    hour: str = "*"
    day: str = "*"
    month: str = "*"
    day_of_week: str = "*"

    def __post_init__(self) -> None:
        if not croniter.is_valid(self.expression):
            raise ValueError(f"Invalid cron fields: {self!r}")

    @property
    def expression(self) -> str:
        """croniter's six-field form: seconds go last."""
        return (
            f"{self.minute} {self.hour} {self.day} "
            f"{self.month} {self.day_of_week} {self.second}"
        )

    def next_fire_after(self, after: datetime) -> datetime:
        """First matching instant strictly after ``after``, in Asia/Shanghai."""
        it = croniter(self.expression, after.astimezone(SHANGHAI))
        return it.get_next(datetime)

    def __str__(self) -> str:
        return f"cron[{self.second} {self.minute} {self.hour} {self.day} {self.month} {self.day_of_week}]"


Trigger = Union[OneShotTrigger, CronTrigger]
