from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time."""

    return datetime.now(timezone.utc)


def hours_to_seconds(hours: float) -> float:
    return hours * 60 * 60


def is_valid_timestamp(value: object) -> bool:
    """Return True for a datetime that can be compared against ``utc_now()``."""

    return isinstance(value, datetime) and value.tzinfo is not None
