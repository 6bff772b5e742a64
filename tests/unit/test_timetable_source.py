"""
tests/unit/test_timetable_source.py — Timetable sources

Covers:
  - InMemoryTimetableSource add / remove / list_all copy semantics
  - SqliteTimetableSource: init() creates schema, list_all() parses ISO dates,
    missing file / missing table / malformed rows raise DataSourceError,
    from_settings() wiring
"""

from __future__ import annotations

import sqlite3
from datetime import date

import pytest

from sctimetable.exceptions import DataSourceError
from sctimetable.timetable.source import (
    InMemoryTimetableSource,
    InstitutionTimetableRecord,
    SqliteTimetableSource,
)


def _insert(db_path, rows, table="school_timetables"):
    con = sqlite3.connect(db_path)
    try:
        con.executemany(
            f"INSERT INTO {table} (school_id, school_name, time_stamp_when_add, "
            f"week_period_when_add) VALUES (?, ?, ?, ?)",
            rows,
        )
        con.commit()
    finally:
        con.close()


class TestInMemorySource:

    @pytest.mark.asyncio
    async def test_empty_by_default(self):
        assert await InMemoryTimetableSource().list_all() == []

    @pytest.mark.asyncio
    async def test_add_and_remove(self):
        src = InMemoryTimetableSource()
        src.add(InstitutionTimetableRecord(1, date(2024, 9, 2), 1))
        src.add(InstitutionTimetableRecord(2, date(2024, 9, 2), 3))
        assert src.remove(1) is True
        assert src.remove(1) is False
        assert [r.institution_id for r in await src.list_all()] == [2]

    @pytest.mark.asyncio
    async def test_list_all_returns_a_copy(self):
        src = InMemoryTimetableSource([InstitutionTimetableRecord(1, date(2024, 9, 2), 1)])
        listed = await src.list_all()
        listed.clear()
        assert len(await src.list_all()) == 1


class TestSqliteSource:

    @pytest.mark.asyncio
    async def test_init_then_list_empty(self, tmp_path):
        src = SqliteTimetableSource(tmp_path / "nested" / "tt.db")
        await src.init()
        assert (tmp_path / "nested" / "tt.db").is_file()
        assert await src.list_all() == []

    @pytest.mark.asyncio
    async def test_init_is_repeatable(self, tmp_path):
        src = SqliteTimetableSource(tmp_path / "tt.db")
        await src.init()
        await src.init()

    @pytest.mark.asyncio
    async def test_list_all_parses_rows(self, tmp_path):
        db = tmp_path / "tt.db"
        src = SqliteTimetableSource(db)
        await src.init()
        _insert(db, [(20, "B", "2024-09-06", 2), (10, "A", "2024-09-02", 1)])

        records = await src.list_all()
        assert records == [
            InstitutionTimetableRecord(10, date(2024, 9, 2), 1),
            InstitutionTimetableRecord(20, date(2024, 9, 6), 2),
        ]

    @pytest.mark.asyncio
    async def test_custom_table(self, tmp_path):
        db = tmp_path / "tt.db"
        src = SqliteTimetableSource(db, table="timetables_v2")
        await src.init()
        _insert(db, [(1, "A", "2024-02-26", 1)], table="timetables_v2")
        assert len(await src.list_all()) == 1

    @pytest.mark.asyncio
    async def test_missing_file_raises_without_creating_it(self, tmp_path):
        db = tmp_path / "absent.db"
        with pytest.raises(DataSourceError, match="not found"):
            await SqliteTimetableSource(db).list_all()
        assert not db.exists()

    @pytest.mark.asyncio
    async def test_missing_table_raises(self, tmp_path):
        db = tmp_path / "empty.db"
        con = sqlite3.connect(db)
        con.execute("CREATE TABLE unrelated (x INTEGER)")
        con.close()
        with pytest.raises(DataSourceError):
            await SqliteTimetableSource(db).list_all()

    @pytest.mark.asyncio
    async def test_malformed_date_raises(self, tmp_path):
        db = tmp_path / "tt.db"
        src = SqliteTimetableSource(db)
        await src.init()
        _insert(db, [(1, "A", "02/09/2024", 1)])
        with pytest.raises(DataSourceError, match="Malformed"):
            await src.list_all()

    def test_from_settings(self):
        from sctimetable.config.settings import Settings
        settings = Settings(timetable={"sqlite_path": "/tmp/x.db", "table": "t1"})
        src = SqliteTimetableSource.from_settings(settings)
        assert str(src.db_path) == "/tmp/x.db"
        assert src.table == "t1"
