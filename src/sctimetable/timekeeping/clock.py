"""
timekeeping/clock.py — CalendarClock

Pure helpers that turn a "now" into the calendar facts the rest of the
package caches: the year and the academic semester.

Every "now" and "today" in sctimetable is taken in Asia/Shanghai (UTC+8),
independent of the host locale.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import IntEnum
from zoneinfo import ZoneInfo

SHANGHAI = ZoneInfo("Asia/Shanghai")

# Months (inclusive) that belong to the spring term.
_SPRING_MONTHS = range(3, 8)


class Semester(IntEnum):
    FALL = 1
    SPRING = 2


def now() -> datetime:
    """Current wall-clock time in Asia/Shanghai."""
    return datetime.now(SHANGHAI)


def today() -> date:
    return now().date()


def year(moment: date) -> int:
    return moment.year


def semester(moment: date) -> Semester:
    """SPRING for March through July, FALL otherwise (winter break included)."""
    return Semester.SPRING if moment.month in _SPRING_MONTHS else Semester.FALL


def semester_begin_year(current_year: int, current_semester: Semester | None) -> int:
    """The calendar year in which the current academic year started."""
    if current_semester == Semester.SPRING:
        return current_year - 1
    return current_year
