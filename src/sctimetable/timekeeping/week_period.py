"""
timekeeping/week_period.py — WeekPeriodCalculator

Extrapolates an institution's current teaching week from the week number
that was asserted when its timetable was added.

The elapsed-week delta is counted from the start of the reference week
(the reference date's ISO weekday is added to the elapsed days), and any
partial week past the first one rounds up. One full elapsed week from a
Monday therefore advances the count by two, not one.
"""

from __future__ import annotations

import math
from datetime import date

_DAYS_PER_WEEK = 7


def week_delta(reference_add_date: date, today: date) -> int:
    day_offset = reference_add_date.isoweekday()
    elapsed_days = today.toordinal() - reference_add_date.toordinal()
    days_added_based_week = day_offset + elapsed_days
    if days_added_based_week <= _DAYS_PER_WEEK:
        return 0
    return math.ceil(days_added_based_week / _DAYS_PER_WEEK)


def current_week(reference_add_date: date, reference_week_at_add: int, today: date) -> int:
    """
    Week number at ``today`` for a timetable added on ``reference_add_date``
    while in week ``reference_week_at_add``.

    ``today`` earlier than the reference date is not rejected; the result is
    whatever the arithmetic yields.
    """
    return reference_week_at_add + week_delta(reference_add_date, today)
