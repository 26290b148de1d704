"""Stage 0: Trading calendar and symbol universe."""

from .trading_calendar import TradingCalendar
from .symbols import (
    AllowlistResolver,
    ResolvedAllowlist,
    apply_only_filter,
    discover_shard_symbols,
    discover_symbols_for_date,
    parse_allowlist,
    parse_s3_uri,
)

__all__ = [
    "TradingCalendar",
    "AllowlistResolver",
    "ResolvedAllowlist",
    "apply_only_filter",
    "discover_shard_symbols",
    "discover_symbols_for_date",
    "parse_allowlist",
    "parse_s3_uri",
]
