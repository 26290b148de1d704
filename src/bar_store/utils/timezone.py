"""Timezone + session utilities for US equity minute data.

Design goals:
- Treat the *exchange time* as America/New_York.
- Store every bar timestamp as UTC milliseconds since the epoch.
- Evaluate session boundaries on the exchange wall clock, so DST shifts
  move the UTC instants but never the local 09:30 / 16:00 edges.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional, Union

import pandas as pd
import pytz

EXCHANGE_TZ = pytz.timezone("America/New_York")
UTC_TZ = pytz.UTC

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC_TZ)


def to_epoch_ms(dt: Union[datetime, pd.Timestamp]) -> int:
    """Convert a datetime to UTC epoch milliseconds.

    Naive datetimes are interpreted as exchange time.
    """
    if isinstance(dt, pd.Timestamp):
        if dt.tz is None:
            dt = dt.tz_localize(EXCHANGE_TZ)
        return int(dt.value // 1_000_000)

    if dt.tzinfo is None:
        dt = EXCHANGE_TZ.localize(dt)
    delta = dt.astimezone(UTC_TZ) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_ms(ms: int) -> datetime:
    """Exchange-local datetime for a UTC epoch-millisecond value."""
    utc = _EPOCH + timedelta(milliseconds=int(ms))
    return utc.astimezone(EXCHANGE_TZ)


def exchange_datetime(day: date, wall: time) -> datetime:
    """Localize a wall-clock time on ``day`` to the exchange timezone."""
    return EXCHANGE_TZ.localize(datetime.combine(day, wall))


def exchange_day_start(day: date) -> datetime:
    """Midnight on ``day`` in exchange time."""
    return exchange_datetime(day, time(0, 0))


def exchange_today(now: Optional[datetime] = None) -> date:
    """Current calendar date on the exchange clock."""
    if now is None:
        now = datetime.now(UTC_TZ)
    elif now.tzinfo is None:
        now = UTC_TZ.localize(now)
    return now.astimezone(EXCHANGE_TZ).date()


def parse_wall_time(value: Union[str, time, None]) -> Optional[time]:
    """Parse an ``HH:MM`` wall-clock string.

    Returns None for empty input; raises ValueError when the string is not
    a valid time of day.
    """
    if value is None or isinstance(value, time):
        return value
    text = str(value).strip()
    if not text:
        return None
    hh, _, mm = text.partition(":")
    try:
        return time(int(hh), int(mm or 0))
    except ValueError as e:
        raise ValueError(f"Invalid wall-clock time {value!r}; expected HH:MM") from e
