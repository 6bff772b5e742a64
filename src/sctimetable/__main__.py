"""Allow `python -m sctimetable` to launch the time provider."""

from sctimetable.main import cli

cli()
