"""Datetime utility functions for timezone handling."""
from datetime import datetime, UTC
from typing import Optional


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware in UTC.

    SQLite stores timestamps without timezone info, so values read back from
    it come out naive and must be treated as UTC.

    Example:
        >>> naive_dt = datetime(2025, 1, 1, 12, 0, 0)
        >>> ensure_utc(naive_dt).tzinfo == UTC
        True

        >>> ensure_utc(None) is None
        True
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_timestamp(dt: datetime) -> int:
    """Whole-second POSIX timestamp of ``dt`` (naive values are read as UTC)."""
    return int(ensure_utc(dt).timestamp())


def from_timestamp(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, UTC)
