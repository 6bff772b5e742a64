from sctimetable.timetable.source import (
    InMemoryTimetableSource,
    InstitutionTimetableRecord,
    SqliteTimetableSource,
    TimetableSource,
)

__all__ = [
    "InMemoryTimetableSource",
    "InstitutionTimetableRecord",
    "SqliteTimetableSource",
    "TimetableSource",
]
