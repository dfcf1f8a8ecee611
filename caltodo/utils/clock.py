"""Clock helpers for caltodo timestamps."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """
    Current time as a naive UTC datetime.

    Stored timestamps are naive UTC so they round-trip through SQLite's
    DateTime column unchanged.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(dt: datetime) -> str:
    """
    Format a stored UTC datetime as ISO-8601 with an explicit offset.

    Examples:
        >>> format_timestamp(datetime(2025, 9, 28, 14, 13, 45))
        '2025-09-28T14:13:45+00:00'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")
