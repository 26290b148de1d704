"""Command-line interface for the bar store pipeline.

Usage:
    bar-store aggregate-day --symbol AAPL --date 2024-08-06
    bar-store backfill --start 2024-08-01 --end 2024-08-31
    bar-store compact-month --year 2024 --month 8
    bar-store compact-range --start 2024-01-01 --end 2024-07-01 --concurrency 16
    bar-store compact-recent --months 2
    bar-store compact-year --year 2023
    bar-store build-tails --last-n 300
    bar-store bars --symbol AAPL --tf 5m --session RTH --last-n 50
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

import typer

from .config import PipelineConfig, load_config
from .errors import AllowlistResolutionError, RunAbortedError
from .orchestrator import (
    RunSummary,
    backfill_dates,
    month_range,
    recent_months,
    run_backfill,
    run_monthly_compaction,
    run_tails,
    run_yearly_compaction,
)
from .schema import ALL_SESSIONS, Session, Timeframe, parse_sessions, parse_timeframes
from .storage import ObjectStore, RetryPolicy, S3ObjectStore

LOGGER = logging.getLogger(__name__)

DEFAULT_TFS = "1m,5m,15m,30m,1h,4h,1d"
DEFAULT_TAIL_TFS = "1m,5m,15m,30m,1h,4h"
DEFAULT_SESSIONS = ",".join(s.value for s in ALL_SESSIONS)

app = typer.Typer(
    name="bar-store",
    help="Minute-bar aggregation, compaction and tail snapshots",
    add_completion=False,
)


def build_store(bucket: str, config: PipelineConfig) -> ObjectStore:
    """Object store client for ``bucket``."""
    retry = RetryPolicy(
        max_attempts=config.retry_attempts,
        base_delay=config.retry_base_delay,
        max_delay=config.retry_max_delay,
    )
    return S3ObjectStore(bucket, retry=retry, endpoint_url=config.s3_endpoint_url)


def _config(ctx: typer.Context) -> PipelineConfig:
    return ctx.obj["config"]


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        raise typer.BadParameter(f"{name} must be YYYY-MM-DD, got {value!r}") from e


def _parse_tfs(value: str) -> list[Timeframe]:
    try:
        return parse_timeframes(value)
    except ValueError as e:
        raise typer.BadParameter(f"Unknown timeframe in {value!r}") from e


def _parse_sessions(value: str) -> list[Session]:
    try:
        return parse_sessions(value)
    except ValueError as e:
        raise typer.BadParameter(f"Unknown session in {value!r}") from e


def _resolve_symbols(
    config: PipelineConfig,
    allowed_uri: Optional[str],
    only: Optional[str],
    from_shards: bool = False,
    timeframes: Optional[list[Timeframe]] = None,
    sessions: Optional[list[Session]] = None,
) -> list[str]:
    from .stage0 import AllowlistResolver, apply_only_filter, discover_shard_symbols

    if from_shards:
        out_store = build_store(config.out_bucket, config)
        found: set[str] = set()
        for sess in sessions or ALL_SESSIONS:
            for tf in timeframes or [Timeframe.D1]:
                found.update(discover_shard_symbols(out_store, tf, sess))
        symbols = sorted(found)
        if not symbols:
            raise AllowlistResolutionError("No symbols found in the shard layout")
    else:
        resolver = AllowlistResolver(config, lambda bucket: build_store(bucket, config))
        symbols = resolver.resolve(allowed_uri).symbols

    target = apply_only_filter(symbols, only)
    if not target:
        raise AllowlistResolutionError("No symbols remain after applying --only filter.")
    return target


def _report(summary: RunSummary, title: str) -> None:
    counts = summary.as_dict()
    typer.echo(
        f"{title}: {counts['total']} unit(s), {counts['succeeded']} ok, "
        f"{counts['skipped']} skipped, {counts['errors']} error(s)"
    )
    for result in summary.errored_units():
        typer.echo(f"  FAILED {result.unit.label}: {result.detail}")


def _fail(e: Exception) -> None:
    typer.echo(f"Error: {e}", err=True)
    if isinstance(e, RunAbortedError) and isinstance(e.summary, RunSummary):
        _report(e.summary, "Aborted run")
    raise typer.Exit(code=1)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config", "-c",
        help="YAML file overlaying the environment configuration",
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Shortcut for --log-level DEBUG"),
):
    """Bar store pipeline."""
    level = "DEBUG" if verbose else log_level.upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format="%(levelname)s %(message)s")
    try:
        cfg = load_config(config)
    except (OSError, ValueError) as e:
        raise typer.BadParameter(str(e), param_hint="--config") from e
    ctx.obj = {"config": cfg}


@app.command("aggregate-day")
def aggregate_day(
    ctx: typer.Context,
    symbol: str = typer.Option(..., "--symbol", "-s", help="Ticker symbol"),
    day: str = typer.Option(..., "--date", "-d", help="Exchange date YYYY-MM-DD"),
    tfs: Optional[str] = typer.Option(None, "--tfs", help="Timeframes; default runs the configured passes"),
    sessions: str = typer.Option(DEFAULT_SESSIONS, "--sessions", help="Sessions used with --tfs"),
    end: Optional[str] = typer.Option(None, "--end", help="RTH session end HH:MM (early close)"),
):
    """Aggregate one symbol-day of raw minutes into daily shards."""
    from .stage0 import TradingCalendar
    from .stage1 import DailyAggregationPipeline, passes_for

    cfg = _config(ctx)
    the_day = _parse_date(day, "--date")
    passes = passes_for(_parse_sessions(sessions), _parse_tfs(tfs)) if tfs else None
    calendar = TradingCalendar() if cfg.use_trading_calendar else None

    pipeline = DailyAggregationPipeline(
        build_store(cfg.raw_bucket, cfg), build_store(cfg.out_bucket, cfg), cfg, calendar
    )
    result = pipeline.process(symbol, the_day, passes=passes, end_override=end)

    typer.echo(f"{result.symbol} {result.day.isoformat()}: {result.status}")
    typer.echo(f"  Minute rows: {result.minute_rows:,}")
    typer.echo(f"  Shards written: {result.written}, already present: {result.existing}")


@app.command()
def backfill(
    ctx: typer.Context,
    start: str = typer.Option(..., "--start", help="First date YYYY-MM-DD"),
    end: str = typer.Option(..., "--end", help="Last date YYYY-MM-DD (inclusive)"),
    allowed_uri: Optional[str] = typer.Option(None, "--allowed-uri", help="Allowlist location (s3://... or path)"),
    only: Optional[str] = typer.Option(None, "--only", help="Comma-separated symbol subset"),
    discover: bool = typer.Option(False, "--discover", help="Discover symbols per date from the raw bucket"),
    max_symbols: Optional[int] = typer.Option(None, "--max-symbols", help="Cap on discovered symbols per date"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Worker threads per date"),
):
    """Aggregate every trading day in [start, end] for the symbol universe."""
    from .stage0 import TradingCalendar, apply_only_filter, discover_symbols_for_date
    from .stage1 import DailyAggregationPipeline

    cfg = _config(ctx)
    first, last = _parse_date(start, "--start"), _parse_date(end, "--end")
    calendar = TradingCalendar(use_exchange_calendar=cfg.use_trading_calendar)
    raw_store = build_store(cfg.raw_bucket, cfg)
    pipeline = DailyAggregationPipeline(
        raw_store, build_store(cfg.out_bucket, cfg), cfg, calendar if cfg.use_trading_calendar else None
    )

    try:
        if discover:
            def symbols_for(day: date) -> list[str]:
                found = discover_symbols_for_date(
                    raw_store,
                    day,
                    by_date_base=cfg.by_date_base,
                    by_ticker_base=cfg.by_ticker_base,
                    concurrency=cfg.discovery_concurrency,
                    max_symbols=max_symbols,
                )
                return apply_only_filter(found, only)
        else:
            universe = _resolve_symbols(cfg, allowed_uri, only)

            def symbols_for(day: date) -> list[str]:
                return universe

        dates = backfill_dates(first, last, calendar)
        typer.echo(f"Backfill {first.isoformat()} -> {last.isoformat()}: {len(dates)} trading day(s)")
        summary = run_backfill(pipeline, dates, symbols_for, concurrency or cfg.concurrency)
    except (AllowlistResolutionError, RunAbortedError) as e:
        _fail(e)
    _report(summary, "Backfill")


def _compact_months(
    cfg: PipelineConfig,
    months: list[tuple[int, int]],
    tfs: str,
    sessions: str,
    allowed_uri: Optional[str],
    only: Optional[str],
    fail_on_mixed: bool,
    concurrency: Optional[int],
    from_shards: bool,
    dry_run: bool = False,
) -> None:
    from .stage2 import Compactor

    timeframes, session_list = _parse_tfs(tfs), _parse_sessions(sessions)
    if not months:
        typer.echo("No months to process (end is exclusive).")
        return
    try:
        symbols = _resolve_symbols(cfg, allowed_uri, only, from_shards, timeframes, session_list)
        conc = concurrency or cfg.concurrency
        typer.echo(f"Months: {', '.join(f'{y:04d}-{m:02d}' for y, m in months)}")
        typer.echo(
            f"Symbols: {len(symbols)}, tfs={','.join(t.value for t in timeframes)}, "
            f"sessions={','.join(s.value for s in session_list)}, "
            f"fail_on_mixed={fail_on_mixed}, concurrency={conc}, dry_run={dry_run}"
        )
        if dry_run:
            typer.echo("Dry run only. No writes will be performed.")
            return
        compactor = Compactor(build_store(cfg.out_bucket, cfg), fail_on_mixed=fail_on_mixed)
        summary = run_monthly_compaction(compactor, months, symbols, session_list, timeframes, conc)
    except (AllowlistResolutionError, RunAbortedError) as e:
        _fail(e)
    _report(summary, "Monthly compaction")


@app.command("compact-month")
def compact_month(
    ctx: typer.Context,
    year: int = typer.Option(..., "--year"),
    month: int = typer.Option(..., "--month", min=1, max=12),
    tfs: str = typer.Option(DEFAULT_TFS, "--tfs", help="Comma-separated timeframes"),
    sessions: str = typer.Option(DEFAULT_SESSIONS, "--sessions", help="Comma-separated sessions"),
    allowed_uri: Optional[str] = typer.Option(None, "--allowed-uri", help="Allowlist location (s3://... or path)"),
    only: Optional[str] = typer.Option(None, "--only", help="Comma-separated symbol subset"),
    fail_on_mixed: bool = typer.Option(False, "--fail-on-mixed", help="Abort on any wrong-symbol row"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency"),
    from_shards: bool = typer.Option(False, "--from-shards", help="Take symbols from the shard layout"),
):
    """Compact one month of daily shards into monthly shards."""
    _compact_months(
        _config(ctx), [(year, month)], tfs, sessions, allowed_uri, only, fail_on_mixed, concurrency, from_shards
    )


@app.command("compact-range")
def compact_range(
    ctx: typer.Context,
    start: str = typer.Option(..., "--start", help="YYYY-MM-DD; its month is the first compacted"),
    end: str = typer.Option(..., "--end", help="YYYY-MM-DD, exclusive at month granularity"),
    tfs: str = typer.Option(DEFAULT_TFS, "--tfs", help="Comma-separated timeframes"),
    sessions: str = typer.Option(DEFAULT_SESSIONS, "--sessions", help="Comma-separated sessions"),
    allowed_uri: Optional[str] = typer.Option(None, "--allowed-uri", help="Allowlist location (s3://... or path)"),
    only: Optional[str] = typer.Option(None, "--only", help="Comma-separated symbol subset"),
    fail_on_mixed: bool = typer.Option(False, "--fail-on-mixed", help="Abort on any wrong-symbol row"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency"),
    from_shards: bool = typer.Option(False, "--from-shards", help="Take symbols from the shard layout"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the plan without writing"),
):
    """Compact every month in [start, end)."""
    months = month_range(_parse_date(start, "--start"), _parse_date(end, "--end"))
    _compact_months(
        _config(ctx), months, tfs, sessions, allowed_uri, only, fail_on_mixed, concurrency, from_shards, dry_run
    )


@app.command("compact-recent")
def compact_recent(
    ctx: typer.Context,
    months: int = typer.Option(2, "--months", min=1, help="Current month plus the months before it"),
    tfs: str = typer.Option(DEFAULT_TFS, "--tfs", help="Comma-separated timeframes"),
    sessions: str = typer.Option(DEFAULT_SESSIONS, "--sessions", help="Comma-separated sessions"),
    allowed_uri: Optional[str] = typer.Option(None, "--allowed-uri", help="Allowlist location (s3://... or path)"),
    only: Optional[str] = typer.Option(None, "--only", help="Comma-separated symbol subset"),
    fail_on_mixed: bool = typer.Option(False, "--fail-on-mixed", help="Abort on any wrong-symbol row"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency"),
    from_shards: bool = typer.Option(False, "--from-shards", help="Take symbols from the shard layout"),
):
    """Compact the last N months, including the current one."""
    _compact_months(
        _config(ctx), recent_months(months), tfs, sessions, allowed_uri, only, fail_on_mixed, concurrency, from_shards
    )


@app.command("compact-year")
def compact_year(
    ctx: typer.Context,
    year: int = typer.Option(..., "--year"),
    tfs: str = typer.Option(DEFAULT_TFS, "--tfs", help="Comma-separated timeframes"),
    sessions: str = typer.Option(DEFAULT_SESSIONS, "--sessions", help="Comma-separated sessions"),
    allowed_uri: Optional[str] = typer.Option(None, "--allowed-uri", help="Allowlist location (s3://... or path)"),
    only: Optional[str] = typer.Option(None, "--only", help="Comma-separated symbol subset"),
    fail_on_mixed: bool = typer.Option(False, "--fail-on-mixed", help="Abort on any wrong-symbol row"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency"),
    from_shards: bool = typer.Option(False, "--from-shards", help="Take symbols from the shard layout"),
):
    """Compact the monthly shards of one year into yearly shards."""
    from .stage2 import Compactor

    cfg = _config(ctx)
    timeframes, session_list = _parse_tfs(tfs), _parse_sessions(sessions)
    try:
        symbols = _resolve_symbols(cfg, allowed_uri, only, from_shards, timeframes, session_list)
        compactor = Compactor(build_store(cfg.out_bucket, cfg), fail_on_mixed=fail_on_mixed)
        summary = run_yearly_compaction(
            compactor, [year], symbols, session_list, timeframes, concurrency or cfg.concurrency
        )
    except (AllowlistResolutionError, RunAbortedError) as e:
        _fail(e)
    _report(summary, "Yearly compaction")


@app.command("build-tails")
def build_tails(
    ctx: typer.Context,
    tfs: str = typer.Option(DEFAULT_TAIL_TFS, "--tfs", help="Comma-separated timeframes"),
    sessions: str = typer.Option(DEFAULT_SESSIONS, "--sessions", help="Comma-separated sessions"),
    last_n: Optional[int] = typer.Option(None, "--last-n", min=1, help="Bars per snapshot"),
    include_daily: bool = typer.Option(False, "--include-daily", help="Also build 1d tails"),
    allowed_uri: Optional[str] = typer.Option(None, "--allowed-uri", help="Allowlist location (s3://... or path)"),
    only: Optional[str] = typer.Option(None, "--only", help="Comma-separated symbol subset"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency"),
):
    """Write lastN snapshots per (timeframe, session, symbol)."""
    from .stage2 import TailSnapshotBuilder

    cfg = _config(ctx)
    timeframes, session_list = _parse_tfs(tfs), _parse_sessions(sessions)
    try:
        symbols = _resolve_symbols(cfg, allowed_uri, only)
        builder = TailSnapshotBuilder(build_store(cfg.out_bucket, cfg), max_lookback_days=cfg.tail_lookback_days)
        summary = run_tails(
            builder,
            symbols,
            session_list,
            timeframes,
            last_n=last_n or cfg.tail_last_n,
            include_daily=include_daily,
            concurrency=concurrency or cfg.concurrency,
        )
    except (AllowlistResolutionError, RunAbortedError) as e:
        _fail(e)
    _report(summary, "Tail snapshots")


@app.command()
def bars(
    ctx: typer.Context,
    symbol: str = typer.Option(..., "--symbol", "-s", help="Ticker symbol"),
    tf: str = typer.Option("5m", "--tf", help="Timeframe"),
    session: str = typer.Option("RTH", "--session", help="Session"),
    last_n: Optional[int] = typer.Option(None, "--last-n", min=1, help="Most recent N bars"),
    start: Optional[str] = typer.Option(None, "--start", help="Range start YYYY-MM-DD"),
    end: Optional[str] = typer.Option(None, "--end", help="Range end YYYY-MM-DD (exclusive)"),
    tier: str = typer.Option("daily", "--tier", help="daily, monthly or yearly shards"),
    fallback: bool = typer.Option(True, "--fallback/--no-fallback", help="Try the other session when empty"),
):
    """Print bars through the loader."""
    from .stage3 import BarLoader, Tier, bars_to_frame
    from .utils.timezone import exchange_day_start, to_epoch_ms

    cfg = _config(ctx)
    timeframe = _parse_tfs(tf)[0]
    sess = _parse_sessions(session)[0]
    try:
        loader = BarLoader(build_store(cfg.out_bucket, cfg), Tier(tier.lower()))
    except ValueError as e:
        raise typer.BadParameter(f"Unknown tier {tier!r}", param_hint="--tier") from e
    symbol = symbol.strip().upper()

    if start or end:
        if not (start and end):
            raise typer.BadParameter("--start and --end must be given together")
        start_ms = to_epoch_ms(exchange_day_start(_parse_date(start, "--start")))
        end_ms = to_epoch_ms(exchange_day_start(_parse_date(end, "--end")))
        result = loader.load_range(timeframe, sess, symbol, start_ms, end_ms)
    else:
        result = loader.load_last_n(timeframe, sess, symbol, last_n or cfg.tail_last_n, fallback=fallback)

    if not result:
        typer.echo(f"No bars for {symbol} {timeframe.value} {sess.value}")
        return
    typer.echo(bars_to_frame(result).to_string(index=False))


def main() -> None:
    """Entrypoint for the console script."""
    app()


if __name__ == "__main__":
    main()
