"""Bar loader: the read path over published shards.

Shards can be read from one of three tiers:

| Tier    | Root          | Prune unit |
|---------|---------------|------------|
| daily   | agg/          | day        |
| monthly | agg-monthly/  | month      |
| yearly  | agg-yearly/   | year       |

Prune windows are exchange-local (America/New_York) calendar periods, the
same clock the shard paths are named by.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Optional

import pandas as pd

from ..schema import CandleBar, Session, Timeframe, dedupe_sorted
from ..storage import ObjectInfo, ObjectStore, paths
from ..stage1.shard_writer import read_shard
from ..utils.timezone import exchange_day_start, to_epoch_ms

LOGGER = logging.getLogger(__name__)


class Tier(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def _next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


@dataclass(frozen=True)
class ShardRef:
    """A listed shard with the exchange-local period it covers."""

    key: str
    start_ms: int
    end_ms: int

    def overlaps(self, start_ms: int, end_ms: int) -> bool:
        return self.end_ms > start_ms and self.start_ms < end_ms


def _day_ref(obj: ObjectInfo) -> Optional[ShardRef]:
    day = paths.day_from_path(obj.key)
    if day is None:
        return None
    start = to_epoch_ms(exchange_day_start(day))
    end = to_epoch_ms(exchange_day_start(day + timedelta(days=1)))
    return ShardRef(obj.key, start, end)


def _month_ref(obj: ObjectInfo) -> Optional[ShardRef]:
    ym = paths.month_from_path(obj.key)
    if ym is None:
        return None
    year, month = ym
    ny, nm = _next_month(year, month)
    start = to_epoch_ms(exchange_day_start(date(year, month, 1)))
    end = to_epoch_ms(exchange_day_start(date(ny, nm, 1)))
    return ShardRef(obj.key, start, end)


def _year_ref(obj: ObjectInfo) -> Optional[ShardRef]:
    year = paths.year_from_path(obj.key)
    if year is None:
        return None
    start = to_epoch_ms(exchange_day_start(date(year, 1, 1)))
    end = to_epoch_ms(exchange_day_start(date(year + 1, 1, 1)))
    return ShardRef(obj.key, start, end)


_TIERS: dict[Tier, tuple[Callable[..., str], Callable[[ObjectInfo], Optional[ShardRef]]]] = {
    Tier.DAILY: (paths.daily_symbol_prefix, _day_ref),
    Tier.MONTHLY: (paths.monthly_symbol_prefix, _month_ref),
    Tier.YEARLY: (paths.yearly_symbol_prefix, _year_ref),
}


def bars_to_frame(bars: list[CandleBar]) -> pd.DataFrame:
    """Bars as a DataFrame with an added exchange-local ``time`` column."""
    columns = ["t", "o", "h", "l", "c", "v", "vw", "symbol", "tf", "session"]
    df = pd.DataFrame([b.to_record() for b in bars], columns=columns)
    if df.empty:
        return df
    df.insert(0, "time", pd.to_datetime(df["t"], unit="ms", utc=True).dt.tz_convert("America/New_York"))
    return df


class BarLoader:
    """Load bars for one (timeframe, session, symbol) from published shards."""

    def __init__(self, store: ObjectStore, tier: Tier = Tier.DAILY):
        """Initialize loader.

        Args:
            store: Out bucket store
            tier: Which shard granularity to read
        """
        self.store = store
        self.tier = Tier(tier)

    def list_shards(self, timeframe: Timeframe, session: Session, symbol: str) -> list[ShardRef]:
        """Shards of the series, oldest first."""
        prefix_fn, ref_fn = _TIERS[self.tier]
        refs = []
        for obj in self.store.list(prefix_fn(timeframe, session, symbol)):
            ref = ref_fn(obj)
            if ref is not None:
                refs.append(ref)
        refs.sort(key=lambda r: r.start_ms)
        return refs

    def _read(self, ref: ShardRef, timeframe: Timeframe, session: Session, symbol: str) -> list[CandleBar]:
        return read_shard(self.store, ref.key, (symbol, Timeframe(timeframe).value, Session(session).value))

    def load_last_n(
        self,
        timeframe: Timeframe,
        session: Session,
        symbol: str,
        n: int,
        fallback: bool = True,
    ) -> list[CandleBar]:
        """Most recent ``n`` bars, ascending.

        Shards are read newest first and reading stops as soon as ``n`` rows
        are collected. When the session has no bars and ``fallback`` is set,
        the other session is tried.
        """
        session = Session(session)
        bars = self._last_n(timeframe, session, symbol, n)
        if bars or not fallback:
            return bars
        LOGGER.info("No %s bars for %s %s; falling back to %s", session.value, symbol, Timeframe(timeframe).value, session.other.value)
        return self._last_n(timeframe, session.other, symbol, n)

    def _last_n(self, timeframe: Timeframe, session: Session, symbol: str, n: int) -> list[CandleBar]:
        if n <= 0:
            return []
        out: list[CandleBar] = []
        for ref in reversed(self.list_shards(timeframe, session, symbol)):
            out.extend(self._read(ref, timeframe, session, symbol))
            if len(out) >= n:
                break
        return dedupe_sorted(out)[-n:]

    def load_range(
        self,
        timeframe: Timeframe,
        session: Session,
        symbol: str,
        start_ms: int,
        end_ms: int,
    ) -> list[CandleBar]:
        """Bars with ``start_ms <= t < end_ms``, ascending.

        Shards whose period cannot overlap the range are never opened.
        """
        if end_ms <= start_ms:
            return []
        candidates = [r for r in self.list_shards(timeframe, session, symbol) if r.overlaps(start_ms, end_ms)]
        LOGGER.debug("Range read %s %s %s: %d shard(s)", symbol, Timeframe(timeframe).value, Session(session).value, len(candidates))
        out = []
        for ref in candidates:
            out.extend(b for b in self._read(ref, timeframe, session, symbol) if start_ms <= b.t < end_ms)
        return dedupe_sorted(out)

    def load_range_prefer_rth(
        self,
        timeframe: Timeframe,
        symbol: str,
        start_ms: int,
        end_ms: int,
    ) -> list[CandleBar]:
        """RTH range, or EXTENDED when RTH has nothing in the range."""
        rth = self.load_range(timeframe, Session.RTH, symbol, start_ms, end_ms)
        if rth:
            return rth
        return self.load_range(timeframe, Session.EXTENDED, symbol, start_ms, end_ms)
