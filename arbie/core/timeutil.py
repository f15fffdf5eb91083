"""
Time utilities for Arbie.

All internal timestamps are timezone-aware UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def now_utc() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: Optional[datetime] = None, fmt: str = "iso") -> str:
    """
    Format datetime to string.

    Args:
        dt: Datetime to format. Uses current UTC time if not provided.
        fmt: Format type - 'iso', 'display', 'time', or a strftime pattern

    Returns:
        Formatted string
    """
    if dt is None:
        dt = now_utc()

    formats = {
        "iso": "%Y-%m-%dT%H:%M:%SZ",
        "display": "%Y-%m-%d %H:%M:%S",
        "time": "%H:%M:%S",
        "log": "%Y-%m-%d %H:%M:%S.%f",
    }

    return dt.strftime(formats.get(fmt, fmt))


def generate_cycle_id(prefix: str = "cycle") -> str:
    """Generate a unique polling cycle ID based on timestamp."""
    return f"{prefix}_{format_timestamp(now_utc(), '%Y%m%d_%H%M%S_%f')}"
