"""
tests/unit/test_main.py — Entry point and logging setup

Covers:
  - parse_args() defaults and flags
  - bootstrap() exits with code 1 on invalid or inconsistent config
  - main(--status) runs the startup jobs against a fresh SQLite store and
    prints the state tables
  - setup_logging() writes JSON lines carrying the bound job context
"""

from __future__ import annotations

import json
import logging
import sqlite3
import textwrap

import pytest
import structlog

from sctimetable.main import bootstrap, main, parse_args
from sctimetable.observability.logger import bind_job, clear_job, get_logger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    structlog.reset_defaults()


def _config(tmp_path) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(
        textwrap.dedent(f"""
            timetable:
              sqlite_path: {tmp_path / "tt.db"}
            logging:
              log_dir: {tmp_path / "logs"}
              console_output: false
        """),
        encoding="utf-8",
    )
    return str(path)


# ─────────────────────────────────────────────────────────────────────────────
# Argument parsing
# ─────────────────────────────────────────────────────────────────────────────

class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.log_level is None
        assert args.status is False

    def test_flags(self):
        args = parse_args(["--config", "c.yaml", "--log-level", "DEBUG", "--status"])
        assert args.config == "c.yaml"
        assert args.log_level == "DEBUG"
        assert args.status is True

    def test_rejects_unknown_level(self):
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "LOUD"])


# ─────────────────────────────────────────────────────────────────────────────
# Bootstrap
# ─────────────────────────────────────────────────────────────────────────────

class TestBootstrap:

    def test_invalid_value_exits(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        cfg = tmp_path / "bad.yaml"
        cfg.write_text("scheduler:\n  max_concurrent_jobs: 0\n", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            bootstrap(parse_args(["--config", str(cfg)]))
        assert exc_info.value.code == 1
        assert "max_concurrent_jobs" in capsys.readouterr().err

    def test_inconsistent_config_exits(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        cfg = tmp_path / "bad.yaml"
        cfg.write_text(f"timetable:\n  sqlite_path: {tmp_path}\n", encoding="utf-8")
        with pytest.raises(SystemExit) as exc_info:
            bootstrap(parse_args(["--config", str(cfg)]))
        assert exc_info.value.code == 1
        assert "is a directory" in capsys.readouterr().err

    def test_returns_settings(self, tmp_path, monkeypatch, restore_logging):
        monkeypatch.chdir(tmp_path)
        settings, log = bootstrap(parse_args(["--config", _config(tmp_path)]))
        assert settings.timetable.sqlite_path == str(tmp_path / "tt.db")
        assert (tmp_path / "logs").is_dir()


# ─────────────────────────────────────────────────────────────────────────────
# main --status
# ─────────────────────────────────────────────────────────────────────────────

class TestStatusRun:

    @pytest.mark.asyncio
    async def test_status_on_empty_store(self, tmp_path, monkeypatch, capsys, restore_logging):
        monkeypatch.chdir(tmp_path)
        code = await main(["--config", _config(tmp_path), "--status"])
        assert code == 0
        assert (tmp_path / "tt.db").is_file()
        out = capsys.readouterr().out
        assert "Time provider" in out
        assert "Week period" in out

    @pytest.mark.asyncio
    async def test_status_lists_stored_schools(self, tmp_path, monkeypatch, capsys, restore_logging):
        monkeypatch.chdir(tmp_path)
        db = tmp_path / "tt.db"
        con = sqlite3.connect(db)
        con.execute(
            "CREATE TABLE school_timetables (school_id INTEGER PRIMARY KEY, school_name TEXT, "
            "time_stamp_when_add TEXT NOT NULL, week_period_when_add INTEGER NOT NULL)"
        )
        con.execute("INSERT INTO school_timetables VALUES (4242, 'A', '2024-09-02', 1)")
        con.commit()
        con.close()

        code = await main(["--config", _config(tmp_path), "--status"])
        assert code == 0
        assert "4242" in capsys.readouterr().out


# ─────────────────────────────────────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────────────────────────────────────

class TestLogging:

    def _lines(self, log_dir):
        for handler in logging.getLogger().handlers:
            handler.flush()
        text = (log_dir / "sctimetable.log").read_text(encoding="utf-8")
        return [json.loads(line) for line in text.splitlines() if line.strip()]

    def test_file_gets_json_with_job_context(self, tmp_path, restore_logging):
        setup_logging(level="INFO", log_dir=tmp_path, console_output=False)
        bind_job("time_provider.year_updater", "abc123")
        try:
            get_logger("sctimetable.test").info("time_provider.year_updated", current_year=2024)
        finally:
            clear_job()

        line = self._lines(tmp_path)[-1]
        assert line["event"] == "time_provider.year_updated"
        assert line["current_year"] == 2024
        assert line["job"] == "time_provider.year_updater"
        assert line["run_id"] == "abc123"
        assert line["level"] == "info"

    def test_level_filters_debug(self, tmp_path, restore_logging):
        setup_logging(level="INFO", log_dir=tmp_path, console_output=False)
        log = get_logger("sctimetable.test")
        log.debug("hidden")
        log.info("shown")
        events = [line["event"] for line in self._lines(tmp_path)]
        assert "hidden" not in events
        assert "shown" in events

    def test_clear_job_drops_context(self, tmp_path, restore_logging):
        setup_logging(level="INFO", log_dir=tmp_path, console_output=False)
        bind_job("g.j", "r1")
        clear_job()
        get_logger("sctimetable.test").info("after")
        assert "job" not in self._lines(tmp_path)[-1]
