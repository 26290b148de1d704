"""Tail snapshots: the most recent N bars of one series.

The builder walks backwards one calendar day at a time from today
(exchange clock), reading daily shards until N rows are collected or the
lookback bound is reached. The snapshot is overwritten on every build.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional

from ..schema import CandleBar, Session, Timeframe, dedupe_sorted
from ..storage import ObjectStore, paths
from ..stage1.shard_writer import read_shard, temp_shard_file, write_shard_file
from ..utils.timezone import exchange_today

LOGGER = logging.getLogger(__name__)

DEFAULT_LAST_N = 300
DEFAULT_LOOKBACK_DAYS = 80


@dataclass(frozen=True)
class TailResult:
    path: str
    rows: int
    days_scanned: int
    first_ts: int
    last_ts: int


def select_tail(bars: list[CandleBar], last_n: int) -> list[CandleBar]:
    """Deduplicate by timestamp (last wins), sort ascending, keep the final ``last_n``."""
    if last_n <= 0:
        return []
    return dedupe_sorted(bars)[-last_n:]


class TailSnapshotBuilder:
    """Build ``tail/{tf}/session={S}/symbol={SYM}/lastN={n}.parquet``."""

    def __init__(
        self,
        store: ObjectStore,
        max_lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        today: Optional[Callable[[], date]] = None,
    ):
        """Initialize builder.

        Args:
            store: Out bucket store
            max_lookback_days: Calendar days scanned before giving up
            today: Clock returning the exchange-local date (tests pin it)
        """
        self.store = store
        self.max_lookback_days = max_lookback_days
        self.today = today or exchange_today

    def collect(self, timeframe: Timeframe, session: Session, symbol: str, last_n: int) -> tuple[list[CandleBar], int]:
        """Rows from the newest daily shards, plus the number of days scanned."""
        expected = (symbol, timeframe.value, session.value)
        rows: list[CandleBar] = []
        day = self.today()
        scanned = 0
        while scanned < self.max_lookback_days and len(rows) < last_n:
            key = paths.daily_shard_path(timeframe, session, symbol, day)
            if self.store.exists(key):
                rows.extend(read_shard(self.store, key, expected))
            scanned += 1
            day -= timedelta(days=1)
        return rows, scanned

    def build(
        self,
        timeframe: Timeframe,
        session: Session,
        symbol: str,
        last_n: int = DEFAULT_LAST_N,
        include_daily: bool = False,
    ) -> Optional[TailResult]:
        """Build and publish one tail snapshot.

        Returns:
            TailResult, or None when skipped (``1d`` without include_daily)
            or when no rows were found

        Raises:
            ShardHeaderMismatchError: A daily shard names another series
        """
        timeframe, session = Timeframe(timeframe), Session(session)
        if timeframe is Timeframe.D1 and not include_daily:
            LOGGER.debug("Skipping 1d tail for %s %s", symbol, session.value)
            return None

        rows, scanned = self.collect(timeframe, session, symbol, last_n)
        tail = select_tail(rows, last_n)
        if not tail:
            LOGGER.warning("[tail] no rows for %s %s %s", symbol, timeframe.value, session.value)
            return None

        out = paths.tail_path(timeframe, session, symbol, last_n)
        local = temp_shard_file(f"tail-{timeframe.value}-{session.value}-{symbol}-{last_n}")
        try:
            write_shard_file(tail, local)
            self.store.upload_from(local, out)
        finally:
            local.unlink(missing_ok=True)

        LOGGER.info("[tail] %s %s %s -> %d rows -> %s", symbol, timeframe.value, session.value, len(tail), self.store.uri(out))
        return TailResult(path=out, rows=len(tail), days_scanned=scanned, first_ts=tail[0].t, last_ts=tail[-1].t)
