"""Exchange trading calendar.

Backed by `pandas_market_calendars` (NYSE). Used by backfills to skip
weekends and exchange holidays, and by the aggregator to shorten the RTH
session on early-close days (e.g. 13:00 the day after Thanksgiving).

With ``use_exchange_calendar=False`` the calendar is plain Monday to Friday and no
early closes are reported; useful for vendors that publish holiday files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from functools import lru_cache
from typing import Optional

import pandas as pd
import pandas_market_calendars as mcal

from ..utils.timezone import EXCHANGE_TZ

REGULAR_CLOSE = time(16, 0)


@lru_cache(maxsize=8)
def _schedule(calendar_name: str, start: date, end: date) -> pd.DataFrame:
    calendar = mcal.get_calendar(calendar_name)
    schedule = calendar.schedule(start_date=start, end_date=end)
    for col in ("market_open", "market_close"):
        if col not in schedule.columns:
            continue
        series = schedule[col]
        if getattr(series.dt, "tz", None) is None:
            series = series.dt.tz_localize("UTC")
        schedule[col] = series.dt.tz_convert(EXCHANGE_TZ)
    return schedule


@dataclass
class TradingCalendar:
    """Trading-day and early-close lookups for the exchange."""

    calendar_name: str = "XNYS"
    use_exchange_calendar: bool = True
    _year_cache: dict[int, pd.DataFrame] = field(default_factory=dict, init=False, repr=False)

    def get_schedule(self, start_date: date, end_date: date) -> pd.DataFrame:
        """Schedule with ``market_open`` / ``market_close`` in exchange time.

        Index is a tz-naive DatetimeIndex of trading dates.
        """
        if start_date > end_date:
            start_date, end_date = end_date, start_date
        if not self.use_exchange_calendar:
            idx = pd.bdate_range(start=start_date, end=end_date, freq="B")
            return pd.DataFrame(index=idx, columns=["market_open", "market_close"])
        return _schedule(self.calendar_name, start_date, end_date)

    def _year(self, year: int) -> pd.DataFrame:
        if year not in self._year_cache:
            self._year_cache[year] = self.get_schedule(date(year, 1, 1), date(year, 12, 31))
        return self._year_cache[year]

    def is_trading_day(self, day: date) -> bool:
        return pd.Timestamp(day) in self._year(day.year).index

    def trading_days(self, start_date: date, end_date: date) -> list[date]:
        """Trading dates in ``[start_date, end_date]``."""
        return [ts.date() for ts in self.get_schedule(start_date, end_date).index]

    def early_close(self, day: date) -> Optional[time]:
        """Local close time when the regular session ends before 16:00."""
        if not self.use_exchange_calendar:
            return None
        schedule = self._year(day.year)
        key = pd.Timestamp(day)
        if key not in schedule.index:
            return None
        close = schedule.loc[key, "market_close"]
        if pd.isna(close):
            return None
        close_time = close.time()
        return close_time if close_time < REGULAR_CLOSE else None
