"""Object key layout.

Output layout (out bucket):

    agg/{tf}/session={S}/symbol={SYM}/month={yyyy-mm}/day={yyyy-mm-dd}/part-000.parquet
    agg-monthly/{tf}/session={S}/symbol={SYM}/year={yyyy}/month={mm}/part-00001.parquet
    agg-yearly/{tf}/session={S}/symbol={SYM}/year={yyyy}/part-00001.parquet
    tail/{tf}/session={S}/symbol={SYM}/lastN={n}.parquet
    manifests/monthly/{yyyy-mm}/{tf}/session={S}/{SYM}.json
    manifests/yearly/{yyyy}/{tf}/session={S}/{SYM}.json

Raw layout (raw bucket):

    {by_date_base}/{yyyy-mm-dd}/{SYM}.csv[.gz]
    {by_ticker_base}/{SYM}/{yyyy}/{yyyy-mm-dd}*.csv[.gz]

Keys are date-named, so lexicographic key order is chronological order.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional

from ..schema import Session, Timeframe

EXT = "parquet"

DAILY_PART_RE = re.compile(r"/day=(\d{4}-\d{2}-\d{2})/part-000\.parquet$")
MONTHLY_PART_RE = re.compile(r"/year=(\d{4})/month=(\d{2})/part-00001\.parquet$")
YEARLY_PART_RE = re.compile(r"/year=(\d{4})/part-00001\.parquet$")
SYMBOL_DIR_RE = re.compile(r"symbol=([^/]+)/$")


def _tf(timeframe: Timeframe | str) -> str:
    return Timeframe(timeframe).value


def _sess(session: Session | str) -> str:
    return Session(session).value


def _series(root: str, timeframe, session, symbol: str) -> str:
    return f"{root}/{_tf(timeframe)}/session={_sess(session)}/symbol={symbol}/"


def daily_symbol_prefix(timeframe, session, symbol: str) -> str:
    return _series("agg", timeframe, session, symbol)


def daily_month_prefix(timeframe, session, symbol: str, year: int, month: int) -> str:
    return f"{daily_symbol_prefix(timeframe, session, symbol)}month={year:04d}-{month:02d}/day="


def daily_shard_path(timeframe, session, symbol: str, day: date) -> str:
    iso = day.isoformat()
    return f"{daily_symbol_prefix(timeframe, session, symbol)}month={iso[:7]}/day={iso}/part-000.{EXT}"


def monthly_symbol_prefix(timeframe, session, symbol: str) -> str:
    return _series("agg-monthly", timeframe, session, symbol)


def monthly_year_prefix(timeframe, session, symbol: str, year: int) -> str:
    return f"{monthly_symbol_prefix(timeframe, session, symbol)}year={year:04d}/month="


def monthly_shard_path(timeframe, session, symbol: str, year: int, month: int) -> str:
    return f"{monthly_symbol_prefix(timeframe, session, symbol)}year={year:04d}/month={month:02d}/part-00001.{EXT}"


def yearly_symbol_prefix(timeframe, session, symbol: str) -> str:
    return _series("agg-yearly", timeframe, session, symbol)


def yearly_shard_path(timeframe, session, symbol: str, year: int) -> str:
    return f"{yearly_symbol_prefix(timeframe, session, symbol)}year={year:04d}/part-00001.{EXT}"


def tail_path(timeframe, session, symbol: str, last_n: int) -> str:
    return f"tail/{_tf(timeframe)}/session={_sess(session)}/symbol={symbol}/lastN={last_n}.{EXT}"


def monthly_manifest_path(timeframe, session, symbol: str, year: int, month: int) -> str:
    return f"manifests/monthly/{year:04d}-{month:02d}/{_tf(timeframe)}/session={_sess(session)}/{symbol}.json"


def yearly_manifest_path(timeframe, session, symbol: str, year: int) -> str:
    return f"manifests/yearly/{year:04d}/{_tf(timeframe)}/session={_sess(session)}/{symbol}.json"


def temp_publish_path(final_path: str, tag: str) -> str:
    """Sibling key used while publishing ``final_path`` atomically."""
    stem, dot, ext = final_path.rpartition(".")
    return f"{stem}.tmp-{tag}{dot}{ext}"


def shard_series_prefix(root: str, timeframe, session) -> str:
    """``{root}/{tf}/session={S}/symbol=`` for symbol discovery."""
    return f"{root}/{_tf(timeframe)}/session={_sess(session)}/symbol="


def symbol_from_prefix(prefix: str) -> Optional[str]:
    m = SYMBOL_DIR_RE.search(prefix)
    return m.group(1) if m else None


def day_from_path(key: str) -> Optional[date]:
    m = DAILY_PART_RE.search(key)
    return date.fromisoformat(m.group(1)) if m else None


def month_from_path(key: str) -> Optional[tuple[int, int]]:
    m = MONTHLY_PART_RE.search(key)
    return (int(m.group(1)), int(m.group(2))) if m else None


def year_from_path(key: str) -> Optional[int]:
    m = YEARLY_PART_RE.search(key)
    return int(m.group(1)) if m else None


# ---- raw input ----

def raw_by_date_candidates(base: str, day: date, symbol: str) -> list[str]:
    """Exact by-date keys, uncompressed first."""
    return [
        f"{base}/{day.isoformat()}/{symbol}.csv",
        f"{base}/{day.isoformat()}/{symbol}.csv.gz",
    ]


def raw_by_ticker_prefix(base: str, day: date, symbol: str) -> str:
    return f"{base}/{symbol}/{day.year:04d}/{day.isoformat()}"


def allowlist_uri(bucket: str) -> str:
    return f"s3://{bucket}/allowed/allowedTickers.json"
