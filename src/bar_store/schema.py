"""Bar data model and the columnar shard schema.

Every shard file (daily, monthly, yearly, tail) shares one Parquet schema:

| Column  | Type    | Notes                              |
|---------|---------|------------------------------------|
| t       | int64   | bucket start, ms epoch UTC         |
| o,h,l,c | float64 |                                    |
| v       | int64   |                                    |
| vw      | float64 | nullable, volume-weighted price    |
| symbol  | string  | constant within a shard            |
| tf      | string  | constant within a shard            |
| session | string  | constant within a shard            |
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

import numpy as np
import pyarrow as pa


class Session(str, Enum):
    """Named trading-hours window."""

    RTH = "RTH"
    EXTENDED = "EXTENDED"

    @property
    def other(self) -> "Session":
        return Session.EXTENDED if self is Session.RTH else Session.RTH


class Timeframe(str, Enum):
    """Bar resolution."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def minutes(self) -> int:
        return TIMEFRAME_MINUTES[self]

    @property
    def is_intraday(self) -> bool:
        return self is not Timeframe.D1


TIMEFRAME_MINUTES: dict[Timeframe, int] = {
    Timeframe.M1: 1,
    Timeframe.M5: 5,
    Timeframe.M15: 15,
    Timeframe.M30: 30,
    Timeframe.H1: 60,
    Timeframe.H4: 240,
    Timeframe.D1: 1440,
}

ALL_TIMEFRAMES: tuple[Timeframe, ...] = tuple(Timeframe)
INTRADAY_TIMEFRAMES: tuple[Timeframe, ...] = tuple(tf for tf in Timeframe if tf.is_intraday)
ALL_SESSIONS: tuple[Session, ...] = (Session.RTH, Session.EXTENDED)


def is_supported(timeframe: Timeframe, session: Session) -> bool:
    """RTH (6.5 hours) has no clean 4-hour subdivision."""
    return not (timeframe is Timeframe.H4 and session is Session.RTH)


def parse_timeframes(value: str | Iterable[str]) -> list[Timeframe]:
    """Parse a comma-separated list (or iterable) of timeframe labels."""
    items = value.split(",") if isinstance(value, str) else list(value)
    return [Timeframe(str(item).strip()) for item in items if str(item).strip()]


def parse_sessions(value: str | Iterable[str]) -> list[Session]:
    """Parse a comma-separated list (or iterable) of session names."""
    items = value.split(",") if isinstance(value, str) else list(value)
    return [Session(str(item).strip().upper()) for item in items if str(item).strip()]


@dataclass(frozen=True)
class MinuteRow:
    """Canonical 1-minute source bar produced by the row normalizer."""

    t: int
    o: float
    h: float
    l: float
    c: float
    v: float
    symbol: str


@dataclass(frozen=True)
class CandleBar:
    """Aggregated OHLCV bar as stored in a shard."""

    t: int
    o: float
    h: float
    l: float
    c: float
    v: int
    symbol: str
    tf: str
    session: str
    vw: Optional[float] = None

    @property
    def header(self) -> tuple[str, str, str]:
        return (self.symbol, self.tf, self.session)

    def to_record(self) -> dict[str, Any]:
        return {
            "t": self.t,
            "o": self.o,
            "h": self.h,
            "l": self.l,
            "c": self.c,
            "v": self.v,
            "vw": self.vw,
            "symbol": self.symbol,
            "tf": self.tf,
            "session": self.session,
        }


SHARD_SCHEMA = pa.schema(
    [
        pa.field("t", pa.int64(), nullable=False),
        pa.field("o", pa.float64(), nullable=False),
        pa.field("h", pa.float64(), nullable=False),
        pa.field("l", pa.float64(), nullable=False),
        pa.field("c", pa.float64(), nullable=False),
        pa.field("v", pa.int64(), nullable=False),
        pa.field("vw", pa.float64(), nullable=True),
        pa.field("symbol", pa.string(), nullable=False),
        pa.field("tf", pa.string(), nullable=False),
        pa.field("session", pa.string(), nullable=False),
    ]
)


def _as_float(value: Any) -> float:
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    return float(value)


def _as_int(value: Any) -> int:
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, (str, float)):
        return int(float(value))
    return int(value)


def normalize_record(row: Mapping[str, Any]) -> CandleBar:
    """Coerce a record read back from a shard into a CandleBar.

    Readers may surface 64-bit integers as numpy scalars or doubles as
    strings; everything is mapped back onto plain Python numbers.
    """
    vw = row.get("vw")
    if vw is not None:
        vw = _as_float(vw)
        if vw != vw:  # NaN
            vw = None
    return CandleBar(
        t=_as_int(row["t"]),
        o=_as_float(row["o"]),
        h=_as_float(row["h"]),
        l=_as_float(row["l"]),
        c=_as_float(row["c"]),
        v=_as_int(row["v"]),
        vw=vw,
        symbol=str(row["symbol"]),
        tf=str(row["tf"]),
        session=str(row["session"]),
    )


def bars_to_table(bars: Iterable[CandleBar]) -> pa.Table:
    """Build a pyarrow table in shard schema from bars."""
    records = [b.to_record() for b in bars]
    return pa.Table.from_pylist(records, schema=SHARD_SCHEMA)


def table_to_bars(table: pa.Table) -> list[CandleBar]:
    """Read every row of a shard table back into CandleBars."""
    return [normalize_record(r) for r in table.to_pylist()]


def dedupe_sorted(bars: Iterable[CandleBar]) -> list[CandleBar]:
    """Deduplicate by timestamp (last one wins) and sort ascending."""
    by_ts: dict[int, CandleBar] = {}
    for bar in bars:
        by_ts[bar.t] = bar
    return [by_ts[t] for t in sorted(by_ts)]
