"""
timekeeping/ — calendar arithmetic

    from sctimetable.timekeeping.clock import Semester, semester, year
    from sctimetable.timekeeping.week_period import current_week
"""
