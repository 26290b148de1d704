"""Run orchestration: work units, a bounded worker pool and run summaries.

A run expands its scope into independent work units and drains them with a
fixed number of worker threads pulling from one queue. A failing unit is
logged and counted; its siblings keep going. A ``StrictModeViolation``
stops workers from taking new units; once the in-flight units finish the
run raises ``RunAbortedError`` carrying the partial summary.

Fan-out is bounded per dimension: backfills run one pool per date over that
date's symbols, compactions run one pool over flattened
(year, month, symbol, session, timeframe) tuples.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from .errors import RunAbortedError, StrictModeViolation
from .schema import Session, Timeframe, is_supported
from .stage0.trading_calendar import TradingCalendar
from .stage1.pipeline import DAY_WRITTEN, AggregationPass, DailyAggregationPipeline
from .stage2.compactor import Compactor
from .stage2.tail_snapshot import TailSnapshotBuilder
from .utils.timezone import exchange_today

LOGGER = logging.getLogger(__name__)


class UnitStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class WorkUnit:
    """One independent piece of work.

    Attributes:
        kind: ``aggregate``, ``compact-month``, ``compact-year`` or ``tail``.
        symbol: Ticker symbol.
        timeframe: Target timeframe (None for day aggregation).
        session: Target session (None for day aggregation).
        day: Exchange date for day aggregation.
        year: Period year for compaction.
        month: Period month for monthly compaction.
    """

    kind: str
    symbol: str
    timeframe: Optional[Timeframe] = None
    session: Optional[Session] = None
    day: Optional[date] = None
    year: Optional[int] = None
    month: Optional[int] = None

    @property
    def label(self) -> str:
        parts = [self.kind, self.symbol]
        if self.timeframe is not None:
            parts.append(Timeframe(self.timeframe).value)
        if self.session is not None:
            parts.append(Session(self.session).value)
        if self.day is not None:
            parts.append(self.day.isoformat())
        elif self.year is not None and self.month is not None:
            parts.append(f"{self.year:04d}-{self.month:02d}")
        elif self.year is not None:
            parts.append(f"{self.year:04d}")
        return " ".join(parts)


@dataclass
class UnitResult:
    unit: WorkUnit
    status: UnitStatus
    detail: str = ""


@dataclass
class RunSummary:
    """Collected unit results of a run."""

    results: list[UnitResult] = field(default_factory=list)
    aborted: bool = False
    abort_reason: str = ""

    def count(self, status: UnitStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def succeeded(self) -> int:
        return self.count(UnitStatus.SUCCESS)

    @property
    def skipped(self) -> int:
        return self.count(UnitStatus.SKIPPED)

    @property
    def errors(self) -> int:
        return self.count(UnitStatus.ERROR)

    @property
    def total(self) -> int:
        return len(self.results)

    def errored_units(self) -> list[UnitResult]:
        return [r for r in self.results if r.status is UnitStatus.ERROR]

    def merge(self, other: "RunSummary") -> "RunSummary":
        self.results.extend(other.results)
        if other.aborted and not self.aborted:
            self.aborted = True
            self.abort_reason = other.abort_reason
        return self

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "errors": self.errors,
            "aborted": self.aborted,
        }


Worker = Callable[[WorkUnit], UnitStatus]


def run_pool(units: Sequence[WorkUnit], worker: Worker, concurrency: int = 8) -> RunSummary:
    """Drain ``units`` through ``concurrency`` worker threads.

    Each thread keeps its own result list; lists are merged after the
    threads join. Never raises for unit failures: check ``summary.aborted``.

    Args:
        units: Work units, taken from the queue in order
        worker: Callable processing one unit and returning its status
        concurrency: Number of worker threads

    Returns:
        RunSummary with one result per unit that was started
    """
    summary = RunSummary()
    if not units:
        return summary

    pending: queue.Queue[WorkUnit] = queue.Queue()
    for unit in units:
        pending.put(unit)
    stop = threading.Event()
    abort_reasons: list[str] = []
    per_thread: list[list[UnitResult]] = []

    def loop(results: list[UnitResult]) -> None:
        while not stop.is_set():
            try:
                unit = pending.get_nowait()
            except queue.Empty:
                return
            try:
                status = worker(unit)
                results.append(UnitResult(unit, status or UnitStatus.SKIPPED))
            except StrictModeViolation as e:
                LOGGER.error("Strict mode violation in %s: %s; stopping run", unit.label, e)
                results.append(UnitResult(unit, UnitStatus.ERROR, str(e)))
                abort_reasons.append(str(e))
                stop.set()
            except Exception as e:
                LOGGER.error("Unit failed: %s: %s", unit.label, e)
                LOGGER.debug("Traceback for %s", unit.label, exc_info=True)
                results.append(UnitResult(unit, UnitStatus.ERROR, str(e)))
            finally:
                pending.task_done()

    threads = []
    for i in range(max(1, min(concurrency, len(units)))):
        results: list[UnitResult] = []
        per_thread.append(results)
        t = threading.Thread(target=loop, args=(results,), name=f"bar-store-worker-{i}", daemon=True)
        threads.append(t)
        t.start()
    for t in threads:
        t.join()

    for results in per_thread:
        summary.results.extend(results)
    if abort_reasons:
        summary.aborted = True
        summary.abort_reason = abort_reasons[0]
    return summary


def raise_if_aborted(summary: RunSummary) -> RunSummary:
    if summary.aborted:
        raise RunAbortedError(f"Run aborted: {summary.abort_reason}", summary)
    return summary


# ---- periods ----

def month_range(start: date, end: date) -> list[tuple[int, int]]:
    """(year, month) pairs from ``start``'s month up to ``end``'s month, exclusive."""
    out = []
    y, m = start.year, start.month
    while (y, m) < (end.year, end.month):
        out.append((y, m))
        y, m = (y + 1, 1) if m == 12 else (y, m + 1)
    return out


def recent_months(months: int, today: Optional[date] = None) -> list[tuple[int, int]]:
    """The current month and the ``months - 1`` before it, oldest first."""
    today = today or exchange_today()
    months = max(1, months)
    y, m = today.year, today.month
    for _ in range(months - 1):
        y, m = (y - 1, 12) if m == 1 else (y, m - 1)
    end = date(today.year + 1, 1, 1) if today.month == 12 else date(today.year, today.month + 1, 1)
    return month_range(date(y, m, 1), end)


def backfill_dates(start: date, end: date, calendar: Optional[TradingCalendar] = None) -> list[date]:
    """Dates in ``[start, end]``, restricted to trading days when a calendar is given."""
    if calendar is not None:
        return calendar.trading_days(start, end)
    days = []
    day = start
    while day <= end:
        days.append(day)
        day += timedelta(days=1)
    return days


# ---- runs ----

def _day_status(status: str) -> UnitStatus:
    # exists, skipped and no_data all count as skipped
    return UnitStatus.SUCCESS if status == DAY_WRITTEN else UnitStatus.SKIPPED


def run_backfill(
    pipeline: DailyAggregationPipeline,
    dates: Iterable[date],
    symbols_for: Callable[[date], Sequence[str]],
    concurrency: int = 8,
    passes: Optional[Sequence[AggregationPass]] = None,
) -> RunSummary:
    """Aggregate every symbol of every date; one worker pool per date.

    Args:
        pipeline: Stage 1 pipeline
        dates: Dates to process
        symbols_for: Symbols to process on a date (allowlist or discovery)
        concurrency: Worker threads per date
        passes: Aggregation passes (pipeline defaults when None)
    """
    summary = RunSummary()

    def work(unit: WorkUnit) -> UnitStatus:
        result = pipeline.process(unit.symbol, unit.day, passes=passes)
        return _day_status(result.status)

    for day in dates:
        symbols = list(symbols_for(day))
        if not symbols:
            LOGGER.info("%s: no symbols found (nothing to do)", day.isoformat())
            continue
        units = [WorkUnit("aggregate", sym, day=day) for sym in symbols]
        day_summary = run_pool(units, work, concurrency)
        LOGGER.info("%s: %s", day.isoformat(), day_summary.as_dict())
        summary.merge(day_summary)
        if summary.aborted:
            break
    return raise_if_aborted(summary)


def compaction_units(
    months: Sequence[tuple[int, int]],
    symbols: Sequence[str],
    sessions: Sequence[Session],
    timeframes: Sequence[Timeframe],
) -> list[WorkUnit]:
    return [
        WorkUnit("compact-month", sym, timeframe=tf, session=sess, year=y, month=m)
        for (y, m) in months
        for sym in symbols
        for sess in sessions
        for tf in timeframes
        if is_supported(tf, sess)
    ]


def run_monthly_compaction(
    compactor: Compactor,
    months: Sequence[tuple[int, int]],
    symbols: Sequence[str],
    sessions: Sequence[Session],
    timeframes: Sequence[Timeframe],
    concurrency: int = 8,
) -> RunSummary:
    """Compact every (month, symbol, session, timeframe) tuple."""

    def work(unit: WorkUnit) -> UnitStatus:
        result = compactor.compact_month(unit.timeframe, unit.session, unit.symbol, unit.year, unit.month)
        return UnitStatus.SKIPPED if result is None else UnitStatus.SUCCESS

    units = compaction_units(months, symbols, sessions, timeframes)
    LOGGER.info(
        "Monthly compaction: %d months, %d symbols, %d unit(s), concurrency=%d",
        len(months), len(symbols), len(units), concurrency,
    )
    return raise_if_aborted(run_pool(units, work, concurrency))


def run_yearly_compaction(
    compactor: Compactor,
    years: Sequence[int],
    symbols: Sequence[str],
    sessions: Sequence[Session],
    timeframes: Sequence[Timeframe],
    concurrency: int = 8,
) -> RunSummary:
    """Compact every (year, symbol, session, timeframe) tuple."""

    def work(unit: WorkUnit) -> UnitStatus:
        result = compactor.compact_year(unit.timeframe, unit.session, unit.symbol, unit.year)
        return UnitStatus.SKIPPED if result is None else UnitStatus.SUCCESS

    units = [
        WorkUnit("compact-year", sym, timeframe=tf, session=sess, year=y)
        for y in years
        for sym in symbols
        for sess in sessions
        for tf in timeframes
        if is_supported(tf, sess)
    ]
    return raise_if_aborted(run_pool(units, work, concurrency))


def run_tails(
    builder: TailSnapshotBuilder,
    symbols: Sequence[str],
    sessions: Sequence[Session],
    timeframes: Sequence[Timeframe],
    last_n: int = 300,
    include_daily: bool = False,
    concurrency: int = 8,
) -> RunSummary:
    """Build a tail snapshot for every (symbol, session, timeframe)."""
    timeframes = [tf for tf in timeframes if include_daily or tf is not Timeframe.D1]

    def work(unit: WorkUnit) -> UnitStatus:
        result = builder.build(unit.timeframe, unit.session, unit.symbol, last_n=last_n, include_daily=include_daily)
        return UnitStatus.SKIPPED if result is None else UnitStatus.SUCCESS

    units = [
        WorkUnit("tail", sym, timeframe=tf, session=sess)
        for sym in symbols
        for sess in sessions
        for tf in timeframes
        if is_supported(tf, sess)
    ]
    return raise_if_aborted(run_pool(units, work, concurrency))
