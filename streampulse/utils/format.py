"""
Display formatting helpers

Pure functions that turn raw counters and timestamps into the strings shown
in the dashboard table, cards and KPI row. Every function accepts an optional
``now`` so results are deterministic under test.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

Timestamp = Union[str, datetime, None]


def parse_timestamp(value: Timestamp) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return now if now.tzinfo else now.replace(tzinfo=timezone.utc)


def format_compact_number(num: Union[int, float]) -> str:
    """Format number with compact notation (e.g., 1234 -> 1.2K)."""
    if num < 1_000:
        return str(num)
    if num < 1_000_000:
        return f"{num / 1_000:.1f}K"
    if num < 1_000_000_000:
        return f"{num / 1_000_000:.1f}M"
    return f"{num / 1_000_000_000:.1f}B"


def format_number(num: Union[int, float]) -> str:
    """Format number with thousands separators (e.g., 1234 -> 1,234)."""
    return f"{num:,}"


def calculate_uptime(started_at: Timestamp, now: Optional[datetime] = None) -> str:
    """Elapsed time since ``started_at`` as ``1d 2h``, ``3h 4m``, ``5m 6s`` or ``7s``."""
    start = parse_timestamp(started_at)
    if start is None:
        return "Unknown"

    diff = (_now(now) - start).total_seconds()
    if diff < 0:
        return "Not started"

    seconds = int(diff)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def uptime_seconds(started_at: Timestamp, now: Optional[datetime] = None) -> Optional[int]:
    """Raw uptime in whole seconds, or None when the start time is unknown or in the future."""
    start = parse_timestamp(started_at)
    if start is None:
        return None
    diff = (_now(now) - start).total_seconds()
    if diff < 0:
        return None
    return int(diff)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'s' if count > 1 else ''} ago"


def format_relative_time(value: Timestamp, now: Optional[datetime] = None) -> str:
    """Format a timestamp relative to now (e.g., "2 hours ago")."""
    moment = parse_timestamp(value)
    if moment is None:
        return "Unknown"

    diff = (_now(now) - moment).total_seconds()
    if diff < 0:
        return "In the future"

    seconds = int(diff)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return _plural(days, "day")
    if hours > 0:
        return _plural(hours, "hour")
    if minutes > 0:
        return _plural(minutes, "minute")
    return "Just now"


def get_status_text(is_live: Optional[bool]) -> str:
    if is_live is True:
        return "LIVE"
    if is_live is False:
        return "ENDED"
    return "UNKNOWN"


def format_countdown(seconds: float) -> str:
    """Countdown label for the next refresh."""
    if seconds <= 0:
        return "Refreshing..."
    return f"{int(seconds)}s"
