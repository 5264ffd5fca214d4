"""Conversion of Stripe Unix timestamps."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def to_datetime(value: Any) -> datetime | None:
    """
    Convert a Stripe timestamp (Unix seconds, numeric or numeric string) to an
    aware UTC datetime.

    Returns None for anything that is missing, non-positive or unparseable so a
    malformed payload degrades to an unknown period end instead of failing the
    event.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        seconds = value
    elif isinstance(value, str):
        try:
            seconds = int(value.strip())
        except ValueError:
            try:
                seconds = float(value.strip())
            except ValueError:
                return None
    else:
        return None

    # NaN fails every comparison, so it is rejected here as well
    if not seconds > 0:
        return None

    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def as_utc(value: datetime | None) -> datetime | None:
    """Stored timestamps come back naive from some drivers; they are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None
