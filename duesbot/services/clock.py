"""Time helpers shared by the dues services.

Timestamps are stored in UTC. SQLite drops the offset on write, so anything
read back naive is treated as UTC.
"""

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_timezone(name: str) -> tzinfo:
    """Resolve an IANA timezone name.

    Raises:
        ValueError: If the name is unknown
    """
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


__all__ = ["utc_now", "to_utc", "get_timezone"]
