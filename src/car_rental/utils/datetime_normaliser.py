from datetime import datetime, time, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_iso_string(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        raise ValueError("Stored datetime must be timezone-aware")
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return dt.astimezone(timezone.utc).isoformat()


def parse_window_bound(value: str) -> datetime:
    """Date-only values (``2024-06-01``) are taken as 10:00 UTC on that day."""
    if "T" not in value:
        value = f"{value}T10:00:00+00:00"
    return from_iso_string(value)


def combine_pickup(start_date: datetime, pickup_time: Optional[str]) -> datetime:
    """Pickup instant: the UTC date of ``start_date`` at ``pickup_time`` (HH:MM).

    Falls back to ``start_date`` itself when the time is missing or unparseable.
    """
    if not pickup_time:
        return start_date
    try:
        parsed = time.fromisoformat(pickup_time)
    except ValueError:
        return start_date
    day = start_date.astimezone(timezone.utc).date()
    return datetime.combine(day, parsed.replace(tzinfo=timezone.utc))
