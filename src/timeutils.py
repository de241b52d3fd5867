from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.config import Config
from src.errors import ValidationError

try:
    REFERENCE_TZ = ZoneInfo(getattr(Config, "REFERENCE_TIMEZONE", "UTC"))
except ZoneInfoNotFoundError:
    REFERENCE_TZ = timezone.utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; return an aware UTC datetime."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to the naive UTC form written to the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=REFERENCE_TZ)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_local_datetime(value, field: str = "timestamp") -> Optional[datetime]:
    """
    Parse admin-entered time input.

    Values without an explicit offset (e.g. ``2025-10-01T18:30`` from a
    datetime-local form field) are civil time in the reference timezone.
    Returns naive UTC, ready for storage, or None for empty input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_storage(value)
    if isinstance(value, date):
        return to_storage(datetime(value.year, value.month, value.day))
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date/time string")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} is not a valid date/time: {value!r}") from None
    return to_storage(parsed)


def serialize_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return as_utc(value).isoformat()


__all__ = [
    "REFERENCE_TZ",
    "utcnow",
    "as_utc",
    "to_storage",
    "parse_local_datetime",
    "serialize_dt",
]
