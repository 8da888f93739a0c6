"""UTC datetime utilities."""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def utc_in(**delta: float) -> datetime:
    """utc_now() shifted by a timedelta, e.g. utc_in(hours=24)."""
    return utc_now() + timedelta(**delta)


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
