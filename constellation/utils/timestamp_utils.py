"""
Timestamp utilities for consistent time handling across the system.
"""

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

ID_TIMESTAMP_WIDTH = 13


def now_iso(timestamp: Optional[float] = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        Timestamp such as '2025-01-31T09:15:02.123Z'
    """
    if timestamp is None:
        timestamp = time.time()
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f'{moment.microsecond // 1000:03d}Z'


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (with or without trailing Z) into an aware datetime."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_date_str(value: str) -> str:
    """Return the UTC 'YYYY-MM-DD' date of an ISO timestamp."""
    return parse_iso(value).strftime('%Y-%m-%d')


def days_ago_iso(days: int, timestamp: Optional[float] = None) -> str:
    """Return the ISO timestamp `days` days before now (or before `timestamp`)."""
    if timestamp is None:
        timestamp = time.time()
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc) - timedelta(days=days)
    return now_iso(moment.timestamp())


def new_entry_id(timestamp: Optional[float] = None) -> str:
    """Generate a time-ordered entry id.

    The id is a zero-padded millisecond timestamp followed by random hex, so
    lexicographic order equals creation order.
    """
    if timestamp is None:
        timestamp = time.time()
    return f'{int(timestamp * 1000):0{ID_TIMESTAMP_WIDTH}d}-{uuid.uuid4().hex[:12]}'


def entry_id_floor(timestamp: float) -> str:
    """Smallest id that any entry created at or after `timestamp` can have."""
    return f'{int(timestamp * 1000):0{ID_TIMESTAMP_WIDTH}d}'
