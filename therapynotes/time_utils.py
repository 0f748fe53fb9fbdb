"""Timestamp helpers; all values are UTC."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

Number = Union[int, float]
Scalar = Union[Number, str]


def utc_now() -> datetime:
    """Aware UTC clock used for token expiry checks and record timestamps."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    # Naive values are taken to be UTC already.
    return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def iso_timestamp(dt: Optional[datetime] = None) -> str:
    """Render ``dt`` (default: now) the way the document service does, e.g. ``2025-01-03T16:30:00.000Z``."""

    value = ensure_utc(dt or utc_now())
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def today_date_string(dt: Optional[datetime] = None) -> str:
    """Return ``YYYY-MM-DD`` for ``dt`` (default: today)."""

    return ensure_utc(dt or utc_now()).strftime("%Y-%m-%d")


def from_epoch_seconds(value: Optional[Scalar]) -> Optional[datetime]:
    """Read a JWT ``exp``-style claim; anything that is not a number gives ``None``."""

    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


__all__ = [
    "utc_now",
    "ensure_utc",
    "iso_timestamp",
    "today_date_string",
    "from_epoch_seconds",
]
