"""Timestamp helpers shared by the store, queue, and freshness tracker.

Stored timestamps are UTC text in SQLite's ``datetime('now')`` format so that
plain string comparison in SQL orders them correctly.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable

SQL_FORMAT = "%Y-%m-%d %H:%M:%S"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_sql(dt: datetime) -> str:
    """Format *dt* as UTC ``YYYY-MM-DD HH:MM:SS``. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(SQL_FORMAT)


def parse(value: str | datetime | None) -> datetime | None:
    """Parse a stored, ISO-8601, or RFC 2822 (HTTP header) timestamp.

    Returns an aware UTC datetime, or None when *value* is empty or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if not text:
            return None
        dt = None
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            try:
                dt = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
        if dt is None:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
