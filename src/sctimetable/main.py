"""
main.py — sctimetable Entry Point

Runs the time provider as a standalone process over the SQLite timetable
store. Hosts that embed the service build TimeProviderService themselves.

Usage:
    python -m sctimetable                          # run until interrupted
    python -m sctimetable --status                 # populate once, print, exit
    python -m sctimetable --log-level DEBUG
    python -m sctimetable --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv


def _find_env_file() -> Path | None:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sctimetable",
        description="sctimetable — year, semester and per-school week number provider",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $SCTIMETABLE_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        default=False,
        help="Run the startup jobs once, print the current state and exit",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) on invalid config.
    """
    from pydantic import ValidationError

    from sctimetable.config.settings import ConfigError, load_settings
    from sctimetable.observability.logger import get_logger, setup_logging

    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your environment and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("sctimetable.main")
    return settings, log


def render_status(service) -> None:
    """Print the cached state as rich tables."""
    from rich.console import Console
    from rich.table import Table
    from rich import box

    console = Console()
    semester = service.current_semester

    facts = Table(title="Time provider", box=box.SIMPLE)
    facts.add_column("fact")
    facts.add_column("value", style="cyan")
    facts.add_row("today (Asia/Shanghai)", service.current_time_stamp.isoformat())
    facts.add_row("current year", str(service.current_year))
    facts.add_row("current semester", semester.name if semester is not None else "—")
    facts.add_row("semester begin year", str(service.current_semester_begin_year))
    console.print(facts)

    weeks = Table(title="Week period", box=box.SIMPLE)
    weeks.add_column("school id", justify="right")
    weeks.add_column("week", justify="right", style="cyan")
    for school_id, week in sorted(service.current_week_period.items()):
        weeks.add_row(str(school_id), str(week))
    console.print(weeks)

    jobs = Table(title="Jobs", box=box.SIMPLE)
    jobs.add_column("job")
    jobs.add_column("trigger")
    jobs.add_column("next fire")
    for job in service.scheduler.list_jobs():
        jobs.add_row(job["name"], job["trigger"], job["next_fire"] or "—")
    console.print(jobs)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    from sctimetable.exceptions import DataSourceError
    from sctimetable.service.time_provider import TimeProviderService
    from sctimetable.timetable.source import SqliteTimetableSource

    source = SqliteTimetableSource.from_settings(settings)
    try:
        await source.init()
    except DataSourceError as e:
        log.error("sctimetable.startup_failed", reason="timetable store", error=str(e))
        print(f"\n❌  {e}\n", file=sys.stderr)
        return 1

    service = TimeProviderService.from_settings(settings, source)
    await service.start()
    log.info("sctimetable.running", status_only=args.status)

    try:
        if args.status:
            await service.scheduler.wait_until_idle()
            render_status(service)
            return 0
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        log.info("sctimetable.interrupted")
        raise
    finally:
        await service.stop()
    return 0


def cli() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)
