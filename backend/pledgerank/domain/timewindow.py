"""Time helpers shared by ranking windows and time-based achievements.

Pure functions. SQLite hands back naive datetimes for timezone-aware columns,
so everything read from the database passes through ``as_utc`` first.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum


class Timeframe(str, Enum):
    """Ranking window, relative to the moment the ranking is computed."""

    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


TIMEFRAME_SPANS = {
    Timeframe.WEEK: timedelta(days=7),
    Timeframe.MONTH: timedelta(days=30),
    Timeframe.YEAR: timedelta(days=365),
}


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def window_start(timeframe: Timeframe, now: datetime | None = None) -> datetime | None:
    """Earliest recorded_at included in the window, or None for ``all``."""
    span = TIMEFRAME_SPANS.get(timeframe)
    if span is None:
        return None
    return (as_utc(now) or datetime.now(UTC)) - span


def elapsed_percentage(start: datetime, end: datetime, now: datetime) -> float:
    """Share of the [start, end] window that has passed at ``now``, 0-100.

    A zero-length or inverted window counts as fully elapsed.
    """
    start, end, now = as_utc(start), as_utc(end), as_utc(now)
    total = (end - start).total_seconds()
    if total <= 0:
        return 100.0
    passed = (now - start).total_seconds()
    return max(0.0, min(100.0, passed / total * 100))
