"""
Clock helpers — framework-agnostic.

Services take a ``Clock`` (zero-arg callable returning an aware UTC
datetime) so expiry boundaries can be tested precisely.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Coerce *value* to an aware UTC datetime.

    Naive datetimes (e.g. read from a Mongo client without ``tz_aware``)
    are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_until(moment: datetime, now: datetime) -> int:
    """Whole seconds from *now* until *moment*, rounded up, never negative."""
    delta = (as_utc(moment) - as_utc(now)).total_seconds()
    if delta <= 0:
        return 0
    whole = int(delta)
    return whole if whole == delta else whole + 1
