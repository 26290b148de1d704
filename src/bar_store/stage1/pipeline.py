"""Stage 1 Pipeline: raw minute files to daily bar shards.

One call processes a single (symbol, day): the raw file is located and read
once, then each aggregation pass publishes its shards. The default passes
are:

| Pass           | Session  | Timeframes            | Stamp of 1d bar  |
|----------------|----------|-----------------------|------------------|
| intraday       | EXTENDED | 1m,5m,15m,30m,1h,4h   | n/a              |
| rth daily      | RTH      | 1d                    | session close    |
| extended daily | EXTENDED | 1d                    | session close    |
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional, Sequence

from ..config import PipelineConfig
from ..schema import Session, Timeframe, is_supported
from ..storage import ObjectStore, paths
from ..stage0.trading_calendar import TradingCalendar
from .file_scanner import FileScanner
from .minute_aggregator import AggregationResult, MinuteAggregator
from .raw_reader import RawReader
from .shard_writer import EXISTS, WRITTEN, PublishResult, ShardWriter

LOGGER = logging.getLogger(__name__)

DAY_WRITTEN = "written"
DAY_EXISTS = "exists"
DAY_NO_DATA = "no_data"
DAY_SKIPPED = "skipped"


@dataclass(frozen=True)
class AggregationPass:
    """One (session, timeframes) aggregation over a day of minute rows."""

    session: Session
    timeframes: tuple[Timeframe, ...]

    def targets(self) -> list[Timeframe]:
        return [tf for tf in self.timeframes if is_supported(tf, self.session)]


def default_passes(config: PipelineConfig) -> list[AggregationPass]:
    """Aggregation passes switched on in ``config``."""
    passes = []
    if config.do_extended_intraday:
        intraday = tuple(tf for tf in config.intraday_timeframes if tf.is_intraday)
        if intraday:
            passes.append(AggregationPass(Session.EXTENDED, intraday))
    if config.do_rth_daily:
        passes.append(AggregationPass(Session.RTH, (Timeframe.D1,)))
    if config.do_extended_daily:
        passes.append(AggregationPass(Session.EXTENDED, (Timeframe.D1,)))
    return passes


def passes_for(sessions: Sequence[Session], timeframes: Sequence[Timeframe]) -> list[AggregationPass]:
    """One pass per session covering every requested timeframe."""
    return [AggregationPass(Session(s), tuple(Timeframe(tf) for tf in timeframes)) for s in sessions]


@dataclass
class DayResult:
    """Outcome of processing one (symbol, day)."""

    symbol: str
    day: date
    status: str
    shards: list[PublishResult] = field(default_factory=list)
    minute_rows: int = 0
    qc: list[dict] = field(default_factory=list)

    @property
    def written(self) -> int:
        return sum(1 for s in self.shards if s.status == WRITTEN)

    @property
    def existing(self) -> int:
        return sum(1 for s in self.shards if s.status == EXISTS)

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "day": self.day.isoformat(),
            "status": self.status,
            "minute_rows": self.minute_rows,
            "written": self.written,
            "exists": self.existing,
        }


class DailyAggregationPipeline:
    """Complete Stage 1 processing for one symbol-day."""

    def __init__(
        self,
        raw_store: ObjectStore,
        out_store: ObjectStore,
        config: Optional[PipelineConfig] = None,
        calendar: Optional[TradingCalendar] = None,
    ):
        """Initialize pipeline.

        Args:
            raw_store: Store holding vendor minute files
            out_store: Store receiving daily shards
            config: Pipeline configuration (defaults when omitted)
            calendar: Trading calendar for early closes (None disables them)
        """
        self.config = config or PipelineConfig()
        self.raw_store = raw_store
        self.out_store = out_store
        self.calendar = calendar

        self.scanner = FileScanner(
            raw_store,
            by_date_base=self.config.by_date_base,
            by_ticker_base=self.config.by_ticker_base,
        )
        self.reader = RawReader(raw_store)
        self.aggregator = MinuteAggregator(
            compute_vwap=self.config.compute_vwap,
            drop_partial_final_bucket=self.config.drop_partial_final_bucket,
            day_bar_timestamp=self.config.day_bar_timestamp,
        )
        self.writer = ShardWriter(out_store)

    def target_paths(self, symbol: str, day: date, passes: Sequence[AggregationPass]) -> list[str]:
        return [
            paths.daily_shard_path(tf, p.session, symbol, day)
            for p in passes
            for tf in p.targets()
        ]

    def session_end_override(self, session: Session, day: date) -> Optional[time]:
        """Early-close end of the RTH session, if the calendar reports one."""
        if session is not Session.RTH or self.calendar is None:
            return None
        close = self.calendar.early_close(day)
        if close is not None:
            LOGGER.info("Early close on %s: RTH ends %s", day.isoformat(), close.strftime("%H:%M"))
        return close

    def process(
        self,
        symbol: str,
        day: date,
        passes: Optional[Sequence[AggregationPass]] = None,
        end_override: Optional[str | time] = None,
    ) -> DayResult:
        """Aggregate and publish all shards for ``symbol`` on ``day``.

        Args:
            symbol: Ticker symbol
            day: Exchange calendar date
            passes: Aggregation passes (defaults from config)
            end_override: Explicit RTH session end ``HH:MM``; wins over the calendar

        Returns:
            DayResult describing what was published
        """
        symbol = symbol.strip().upper()
        passes = list(passes) if passes is not None else default_passes(self.config)

        if self.config.skip_if_exists:
            targets = self.target_paths(symbol, day, passes)
            if targets and all(self.out_store.exists(key) for key in targets):
                LOGGER.debug("All %d shards present for %s %s; skipping", len(targets), symbol, day.isoformat())
                return DayResult(symbol=symbol, day=day, status=DAY_SKIPPED)

        files = self.scanner.find(symbol, day)
        if not files:
            return DayResult(symbol=symbol, day=day, status=DAY_NO_DATA)

        rows = self.reader.load_minutes(files, symbol)
        result = DayResult(symbol=symbol, day=day, status=DAY_NO_DATA, minute_rows=len(rows))
        if not rows:
            LOGGER.warning("No usable minute rows for %s %s", symbol, day.isoformat())
            return result

        for agg_pass in passes:
            end = end_override if agg_pass.session is Session.RTH and end_override else None
            if end is None:
                end = self.session_end_override(agg_pass.session, day)
            aggregated = self.aggregator.aggregate(
                rows,
                symbol=symbol,
                day=day,
                session=agg_pass.session,
                timeframes=agg_pass.targets(),
                end_override=end,
            )
            result.qc.append(aggregated.qc.as_dict())
            result.shards.extend(self._publish(aggregated, symbol, day))

        if result.written:
            result.status = DAY_WRITTEN
        elif result.existing:
            result.status = DAY_EXISTS
        LOGGER.info(
            "%s %s: %d written, %d already present",
            symbol, day.isoformat(), result.written, result.existing,
        )
        return result

    def _publish(self, aggregated: AggregationResult, symbol: str, day: date) -> list[PublishResult]:
        published = []
        session = aggregated.window.session
        for tf, bars in aggregated.bars.items():
            if not bars:
                continue
            published.append(self.writer.publish_day(bars, symbol, tf, session, day))
        return published
