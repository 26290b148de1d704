"""Shared utilities for the bar store pipeline."""

from .timezone import (
    EXCHANGE_TZ,
    UTC_TZ,
    exchange_datetime,
    exchange_day_start,
    exchange_today,
    from_epoch_ms,
    parse_wall_time,
    to_epoch_ms,
)

__all__ = [
    "EXCHANGE_TZ",
    "UTC_TZ",
    "exchange_datetime",
    "exchange_day_start",
    "exchange_today",
    "from_epoch_ms",
    "parse_wall_time",
    "to_epoch_ms",
]
