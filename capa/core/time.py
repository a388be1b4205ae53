"""Central time utilities for the engine.

Status derivation compares dates only, so every helper here reduces
timestamps to naive UTC values before comparing them.
"""
from datetime import date, datetime, timezone
from typing import Optional, Union

from dateutil.parser import isoparse


def utc_now() -> datetime:
    """
    Return current UTC time as a naive datetime object.

    The remote store serializes timestamps without an offset, so keeping
    the engine's "now" naive avoids "can't compare offset-naive and
    offset-aware datetimes" errors when both sides meet in a comparison.

    Returns:
        datetime: Current UTC time as a naive datetime object
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    """Reduce a date, datetime or ISO string to a calendar date.

    Aware datetimes are converted to UTC first. Empty strings are treated
    as missing.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        value = isoparse(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def cache_bust_token(now: Optional[datetime] = None) -> str:
    """Millisecond timestamp appended to re-fetch requests."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return str(int(moment.timestamp() * 1000))
