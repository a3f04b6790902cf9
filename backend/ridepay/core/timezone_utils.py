"""
Clock helpers.

Services take a ``Clock`` instead of calling ``datetime.now`` directly so the
hold window and sweeps can be driven deterministically in tests.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read from the store to aware UTC.

    SQLite drops tzinfo on round-trip; naive values are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(later: datetime, earlier: datetime) -> float:
    """Signed number of hours from ``earlier`` to ``later``."""
    later_utc = ensure_utc(later)
    earlier_utc = ensure_utc(earlier)
    assert later_utc is not None and earlier_utc is not None
    return (later_utc - earlier_utc).total_seconds() / 3600
