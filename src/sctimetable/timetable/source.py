"""
timetable/source.py — Timetable sources

Read-only access to the per-institution timetable records the week-period
job extrapolates from. Each record carries the date the timetable was added
and the week number the institution was in at that moment.

Sources:
  - InMemoryTimetableSource : list-backed, for hosts that already hold records
  - SqliteTimetableSource   : async SQLite (aiosqlite) over the bot's timetable table

Usage:
    source = SqliteTimetableSource("./data/sqlite/timetable.db")
    await source.init()
    records = await source.list_all()
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterable, Protocol, Sequence

import aiosqlite

from sctimetable.exceptions import DataSourceError
from sctimetable.observability.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class InstitutionTimetableRecord:
    institution_id: int
    reference_add_date: date
    reference_week_at_add: int


class TimetableSource(Protocol):
    async def list_all(self) -> Sequence[InstitutionTimetableRecord]:
        """Every tracked institution record. May be empty. Raises DataSourceError."""
        ...


# ── In-memory ─────────────────────────────────────────────────────────────────

class InMemoryTimetableSource:

    def __init__(self, records: Iterable[InstitutionTimetableRecord] = ()) -> None:
        self._records: list[InstitutionTimetableRecord] = list(records)

    def add(self, record: InstitutionTimetableRecord) -> None:
        self._records.append(record)

    def remove(self, institution_id: int) -> bool:
        before = len(self._records)
        self._records = [r for r in self._records if r.institution_id != institution_id]
        return len(self._records) != before

    async def list_all(self) -> list[InstitutionTimetableRecord]:
        return list(self._records)


# ── SQLite ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    school_id             INTEGER PRIMARY KEY,
    school_name           TEXT,
    time_stamp_when_add   TEXT    NOT NULL,   -- ISO date, e.g. '2024-09-02'
    week_period_when_add  INTEGER NOT NULL
);
"""


class SqliteTimetableSource:
    """
    Async SQLite-backed timetable source.

    The table name comes from config and is validated there as a plain SQL
    identifier before it is interpolated into statements.
    """

    def __init__(self, db_path: str | Path, table: str = "school_timetables") -> None:
        self.db_path = Path(db_path)
        self.table = table

    @classmethod
    def from_settings(cls, settings) -> "SqliteTimetableSource":
        return cls(settings.timetable.sqlite_path, table=settings.timetable.table)

    async def init(self) -> None:
        """Create the database file and table if missing. Owned by the host, not the jobs."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executescript(_SCHEMA.format(table=self.table))
                await db.commit()
        except sqlite3.Error as e:
            raise DataSourceError(f"Cannot initialise timetable store {self.db_path}: {e}") from e
        log.info("timetable_source.initialised", db_path=str(self.db_path), table=self.table)

    async def list_all(self) -> list[InstitutionTimetableRecord]:
        # connect() would silently create an empty database
        if not self.db_path.is_file():
            raise DataSourceError(f"Timetable store not found: {self.db_path}")

        query = (
            f"SELECT school_id, time_stamp_when_add, week_period_when_add "
            f"FROM {self.table} ORDER BY school_id"
        )
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(query) as cursor:
                    rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise DataSourceError(f"Cannot read {self.table} from {self.db_path}: {e}") from e

        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: tuple) -> InstitutionTimetableRecord:
        school_id, added, week = row
        try:
            return InstitutionTimetableRecord(
                institution_id=int(school_id),
                reference_add_date=date.fromisoformat(str(added)),
                reference_week_at_add=int(week),
            )
        except (TypeError, ValueError) as e:
            raise DataSourceError(
                f"Malformed timetable row for school {school_id!r} in {self.table}: {e}"
            ) from e
