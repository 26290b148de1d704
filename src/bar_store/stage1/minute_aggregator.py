"""Session-aware aggregation of 1-minute bars into coarser timeframes.

Aggregates one symbol's minute rows for one exchange calendar day into
OHLCV bars per timeframe.

Session conventions (America/New_York):

| Session  | Window        | 4h buckets                    |
|----------|---------------|-------------------------------|
| RTH      | 09:30-16:00   | none                          |
| EXTENDED | 04:00-20:00   | 04-08, 08-12, 12-16, 16-20    |

Bucket rules:
- ``1d``: one bucket per day.
- ``4h`` (EXTENDED only): the fixed blocks above.
- everything else: exchange-local hour/minute floored to a multiple of the
  timeframe length, so gaps in the input never move a bucket edge.

Trailing-bucket policy: an RTH intraday bucket whose nominal end falls after
the session end is dropped. EXTENDED keeps its final partial bucket.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Sequence

from ..config import DayBarTimestamp
from ..schema import CandleBar, MinuteRow, Session, Timeframe, is_supported
from ..utils.timezone import (
    exchange_datetime,
    exchange_day_start,
    from_epoch_ms,
    parse_wall_time,
    to_epoch_ms,
)

LOGGER = logging.getLogger(__name__)

SESSION_HOURS: dict[Session, tuple[time, time]] = {
    Session.RTH: (time(9, 30), time(16, 0)),
    Session.EXTENDED: (time(4, 0), time(20, 0)),
}

EXTENDED_4H_BLOCKS: tuple[int, ...] = (4, 8, 12, 16)


@dataclass(frozen=True)
class SessionWindow:
    """Exchange-local ``[start, end)`` window of one session on one day."""

    session: Session
    day: date
    start: datetime
    end: datetime

    @property
    def start_ms(self) -> int:
        return to_epoch_ms(self.start)

    @property
    def end_ms(self) -> int:
        return to_epoch_ms(self.end)

    @property
    def expected_minutes(self) -> int:
        return max(0, int((self.end - self.start).total_seconds() // 60))

    def contains(self, ts_ms: int) -> bool:
        return self.start_ms <= ts_ms < self.end_ms


def session_window(
    day: date,
    session: Session,
    start_override: Optional[str | time] = None,
    end_override: Optional[str | time] = None,
) -> SessionWindow:
    """Compute the session window for ``day``.

    Args:
        day: Exchange calendar date
        session: RTH or EXTENDED
        start_override: Optional ``HH:MM`` replacing the session start
        end_override: Optional ``HH:MM`` replacing the session end (early closes)

    Returns:
        SessionWindow with timezone-aware exchange-local bounds
    """
    session = Session(session)
    start_wall, end_wall = SESSION_HOURS[session]
    start_wall = parse_wall_time(start_override) or start_wall
    end_wall = parse_wall_time(end_override) or end_wall
    return SessionWindow(
        session=session,
        day=day,
        start=exchange_datetime(day, start_wall),
        end=exchange_datetime(day, end_wall),
    )


def bucket_start_ms(ts_ms: int, timeframe: Timeframe, window: SessionWindow) -> int:
    """Start instant (UTC ms) of the bucket that contains ``ts_ms``."""
    if timeframe is Timeframe.D1:
        return to_epoch_ms(exchange_day_start(window.day))

    local = from_epoch_ms(ts_ms)
    minutes = local.hour * 60 + local.minute

    if timeframe is Timeframe.H4 and window.session is Session.EXTENDED:
        block = EXTENDED_4H_BLOCKS[0]
        for start_hour in EXTENDED_4H_BLOCKS:
            if minutes >= start_hour * 60:
                block = start_hour
        return to_epoch_ms(exchange_datetime(local.date(), time(block, 0)))

    floored = (minutes // timeframe.minutes) * timeframe.minutes
    return to_epoch_ms(exchange_datetime(local.date(), time(floored // 60, floored % 60)))


def bucket_end(bucket_ms: int, timeframe: Timeframe) -> datetime:
    """Nominal exchange-local end of a bucket."""
    return from_epoch_ms(bucket_ms) + timedelta(minutes=timeframe.minutes)


@dataclass
class _Accumulator:
    t: int
    o: float
    h: float
    l: float
    c: float
    v: float
    notional: float = 0.0
    vsum: float = 0.0

    def add(self, row: MinuteRow, compute_vwap: bool) -> None:
        self.h = max(self.h, row.h)
        self.l = min(self.l, row.l)
        self.c = row.c
        self.v += row.v
        if compute_vwap:
            self.notional += ((row.h + row.l + row.c) / 3.0) * row.v
            self.vsum += row.v

    @property
    def vwap(self) -> Optional[float]:
        return self.notional / self.vsum if self.vsum else None


@dataclass
class QualityReport:
    """Per-day QC counters; informational only."""

    symbol: str
    day: date
    session: Session
    processed: int = 0
    duplicates: int = 0
    seen_minutes: int = 0
    expected_minutes: int = 0
    out_of_session: int = 0

    @property
    def gaps(self) -> int:
        return max(0, self.expected_minutes - self.seen_minutes)

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "day": self.day.isoformat(),
            "session": self.session.value,
            "processed": self.processed,
            "dupes": self.duplicates,
            "gaps": self.gaps,
            "seen": self.seen_minutes,
            "expected": self.expected_minutes,
            "out_of_session": self.out_of_session,
        }


@dataclass
class AggregationResult:
    """Bars per timeframe plus the QC report for one (symbol, day, session)."""

    window: SessionWindow
    bars: dict[Timeframe, list[CandleBar]] = field(default_factory=dict)
    qc: Optional[QualityReport] = None

    @property
    def total_bars(self) -> int:
        return sum(len(b) for b in self.bars.values())


def _row_key(row: MinuteRow) -> tuple:
    return (row.t, row.o, row.h, row.l, row.c, row.v)


class MinuteAggregator:
    """Aggregate canonical minute rows into per-timeframe OHLCV bars."""

    def __init__(
        self,
        compute_vwap: bool = False,
        drop_partial_final_bucket: bool = True,
        day_bar_timestamp: DayBarTimestamp = DayBarTimestamp.SESSION_CLOSE,
    ):
        """Initialize aggregator.

        Args:
            compute_vwap: Accumulate typical-price notional to emit ``vw``
            drop_partial_final_bucket: Drop an incomplete trailing RTH intraday bucket
            day_bar_timestamp: Stamp ``1d`` bars at session open or session close
        """
        self.compute_vwap = compute_vwap
        self.drop_partial_final_bucket = drop_partial_final_bucket
        self.day_bar_timestamp = day_bar_timestamp

    def aggregate(
        self,
        rows: Iterable[MinuteRow],
        symbol: str,
        day: date,
        session: Session,
        timeframes: Sequence[Timeframe],
        start_override: Optional[str | time] = None,
        end_override: Optional[str | time] = None,
    ) -> AggregationResult:
        """Aggregate one day of minute rows.

        Rows are processed in timestamp order regardless of arrival order, so
        open is the first minute by time and close the last.

        Args:
            rows: Canonical minute rows for ``symbol`` (any order)
            symbol: Symbol written into every bar
            day: Exchange calendar date of the rows
            session: Target session
            timeframes: Requested timeframes; ``4h`` is ignored for RTH
            start_override: Optional session start ``HH:MM``
            end_override: Optional session end ``HH:MM``

        Returns:
            AggregationResult with bars sorted ascending per timeframe
        """
        session = Session(session)
        window = session_window(day, session, start_override, end_override)
        effective = [Timeframe(tf) for tf in timeframes if is_supported(Timeframe(tf), session)]
        result = AggregationResult(window=window)
        qc = QualityReport(symbol=symbol, day=day, session=session, expected_minutes=window.expected_minutes)
        result.qc = qc
        if not effective:
            return result

        start_ms, end_ms = window.start_ms, window.end_ms
        retained = []
        for row in rows:
            if start_ms <= row.t < end_ms:
                retained.append(row)
            else:
                qc.out_of_session += 1
        retained.sort(key=_row_key)

        books: dict[Timeframe, dict[int, _Accumulator]] = {tf: {} for tf in effective}
        seen: set[int] = set()

        for row in retained:
            minute = row.t - row.t % 60_000
            if minute in seen:
                qc.duplicates += 1
            else:
                seen.add(minute)
            qc.processed += 1

            for tf in effective:
                bucket = bucket_start_ms(row.t, tf, window)
                acc = books[tf].get(bucket)
                if acc is None:
                    acc = _Accumulator(t=bucket, o=row.o, h=row.h, l=row.l, c=row.c, v=row.v)
                    if self.compute_vwap:
                        acc.notional = ((row.h + row.l + row.c) / 3.0) * row.v
                        acc.vsum = row.v
                    books[tf][bucket] = acc
                else:
                    acc.add(row, self.compute_vwap)

        qc.seen_minutes = len(seen)
        LOGGER.info(
            "QC %s %s session=%s processed=%d dupes=%d gaps=%d seen=%d/%d",
            symbol, day.isoformat(), session.value, qc.processed, qc.duplicates,
            qc.gaps, qc.seen_minutes, qc.expected_minutes,
        )

        if session is Session.RTH and self.drop_partial_final_bucket:
            for tf in effective:
                self._drop_partial_tail(books[tf], tf, window)

        for tf in effective:
            result.bars[tf] = self._emit(books[tf], tf, window, symbol)

        if not retained:
            LOGGER.warning("No in-session rows for %s %s %s", symbol, day.isoformat(), session.value)
        return result

    @staticmethod
    def _drop_partial_tail(book: dict[int, _Accumulator], timeframe: Timeframe, window: SessionWindow) -> None:
        if not timeframe.is_intraday or not book:
            return
        last = max(book)
        if bucket_end(last, timeframe) > window.end:
            del book[last]

    def _emit(
        self,
        book: dict[int, _Accumulator],
        timeframe: Timeframe,
        window: SessionWindow,
        symbol: str,
    ) -> list[CandleBar]:
        bars = []
        for key in sorted(book):
            acc = book[key]
            if timeframe is Timeframe.D1:
                if self.day_bar_timestamp is DayBarTimestamp.SESSION_CLOSE:
                    t = window.end_ms
                else:
                    t = window.start_ms
            else:
                t = acc.t
            bars.append(
                CandleBar(
                    t=t,
                    o=acc.o,
                    h=acc.h,
                    l=acc.l,
                    c=acc.c,
                    v=int(round(acc.v)),
                    vw=acc.vwap if self.compute_vwap else None,
                    symbol=symbol,
                    tf=timeframe.value,
                    session=window.session.value,
                )
            )
        return bars
