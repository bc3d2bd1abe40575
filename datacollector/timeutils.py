"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_timestamp() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)