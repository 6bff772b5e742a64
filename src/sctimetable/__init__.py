"""
sctimetable — time authority for a school-timetable bot.

Caches the current year, semester and per-school week number, and keeps them
fresh with scheduled jobs evaluated in Asia/Shanghai.
"""

__version__ = "1.0.0"
