"""
observability/logger.py — structlog setup for sctimetable

File output is always JSON (sctimetable.log, size-rotated). Console output is
optional and is either pretty or JSON. While a scheduled job runs, every line
also carries ``job`` and ``run_id``.

    setup_logging(level="INFO", log_dir="./data/logs")
    log = get_logger(__name__)
    log.info("time_provider.year_updated", current_year=2024)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

LOG_FILE_NAME = "sctimetable.log"

# Libraries whose DEBUG/INFO output would drown the job lines.
_QUIET_LIBRARIES = ("aiosqlite",)


def _quiet_libraries() -> None:
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=False),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def _formatter(renderer: Any, pre_chain: list[Any]) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: Optional[bool] = None,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Route structlog through stdlib logging. Call once, before the service starts.

    ``json_format`` only affects the console: None picks pretty output on a
    TTY and JSON when stdout is piped.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if json_format is None:
        json_format = not sys.stdout.isatty()

    pre_chain = _pre_chain()

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), pre_chain))
    handlers: list[logging.Handler] = [file_handler]

    if console_output:
        console_renderer = (
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(_formatter(console_renderer, pre_chain))
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(numeric_level)

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)
    _quiet_libraries()

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "sctimetable", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_job(job: str, run_id: str) -> None:
    """
    Attach job context to every line logged until clear_job().

    The values are contextvars, so they reach both the run's asyncio task and
    the worker thread used for plain-function bodies.
    """
    structlog.contextvars.bind_contextvars(job=job, run_id=run_id)


def clear_job() -> None:
    structlog.contextvars.unbind_contextvars("job", "run_id")
