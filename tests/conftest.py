"""Shared fixtures: in-memory stores and bar/minute builders."""

from datetime import date, time

import pytest

from bar_store.schema import CandleBar, MinuteRow
from bar_store.stage1.shard_writer import ShardWriter
from bar_store.storage import InMemoryObjectStore, paths
from bar_store.utils.timezone import exchange_datetime, to_epoch_ms


def et_ms(day: date, hhmm: str) -> int:
    """UTC epoch ms of an exchange-local wall time."""
    hh, mm = hhmm.split(":")
    return to_epoch_ms(exchange_datetime(day, time(int(hh), int(mm))))


@pytest.fixture(name="et_ms")
def et_ms_fixture():
    return et_ms


@pytest.fixture
def raw_store():
    return InMemoryObjectStore("raw")


@pytest.fixture
def out_store():
    return InMemoryObjectStore("out")


@pytest.fixture
def minutes():
    """Build consecutive 1-minute rows starting at an exchange-local time."""

    def build(day: date, start: str, count: int, symbol: str = "AAPL", base: float = 100.0, volume: float = 10.0):
        t0 = et_ms(day, start)
        rows = []
        for i in range(count):
            price = base + i
            rows.append(
                MinuteRow(
                    t=t0 + i * 60_000,
                    o=price,
                    h=price + 0.5,
                    l=price - 0.5,
                    c=price + 0.25,
                    v=volume,
                    symbol=symbol,
                )
            )
        return rows

    return build


@pytest.fixture
def make_bars():
    """Build bars for one series at fixed spacing."""

    def build(
        t0: int,
        count: int,
        symbol: str = "AAPL",
        tf: str = "5m",
        session: str = "RTH",
        step_ms: int = 300_000,
    ):
        return [
            CandleBar(
                t=t0 + i * step_ms,
                o=1.0 + i,
                h=2.0 + i,
                l=0.5 + i,
                c=1.5 + i,
                v=100 + i,
                symbol=symbol,
                tf=tf,
                session=session,
            )
            for i in range(count)
        ]

    return build


@pytest.fixture
def publish_day(out_store, make_bars):
    """Publish ``count`` 5m bars as the daily shard of ``day``."""

    def publish(
        day: date,
        count: int = 3,
        symbol: str = "AAPL",
        tf: str = "5m",
        session: str = "RTH",
        start: str = "09:30",
        bar_symbol: str = None,
        store=None,
    ):
        bars = make_bars(et_ms(day, start), count, symbol=bar_symbol or symbol, tf=tf, session=session)
        writer = ShardWriter(store or out_store)
        # keyed by the requested symbol; bars may name another one
        key = paths.daily_shard_path(tf, session, symbol, day)
        writer.publish(bars, key, tag=f"test-{symbol}-{day.isoformat()}")
        return bars

    return publish


def csv_text(rows, header="ticker,window_start,open,high,low,close,volume"):
    """Render MinuteRows as a vendor CSV with nanosecond timestamps."""
    lines = [header]
    for r in rows:
        lines.append(f"{r.symbol},{r.t * 1_000_000},{r.o},{r.h},{r.l},{r.c},{int(r.v)}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def write_raw(raw_store):
    """Store MinuteRows as ``minute/{date}/{SYMBOL}.csv`` in the raw bucket."""

    def write(day: date, symbol: str, rows):
        key = f"minute/{day.isoformat()}/{symbol}.csv"
        raw_store.put(key, csv_text(rows).encode("utf-8"))
        return key

    return write
