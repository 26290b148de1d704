"""Raw minute-row normalization.

Vendor files disagree on header names and timestamp units. Each canonical
field is looked up through an ordered list of candidate column names; the
first present, non-empty value wins.

Timestamp units are inferred from magnitude:

| Magnitude        | Unit          | Conversion   |
|------------------|---------------|--------------|
| > 1e16           | nanoseconds   | // 1_000_000 |
| > 1e13           | microseconds  | // 1_000     |
| > 1e10           | milliseconds  | as is        |
| > 1e9            | seconds       | * 1_000      |
| otherwise        | milliseconds  | as is        |

Strings containing ``T`` or ``-`` are parsed as ISO-8601 (naive = UTC).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

import pandas as pd

from ..schema import MinuteRow

# canonical field -> candidate raw column names, in priority order
FIELD_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("symbol", ("ticker", "symbol")),
    ("t", ("timestamp", "window_start", "t", "start", "start_ts")),
    ("o", ("open", "o")),
    ("h", ("high", "h")),
    ("l", ("low", "l")),
    ("c", ("close", "c")),
    ("v", ("volume", "v")),
)
_ALIASES = dict(FIELD_ALIASES)


def lookup(row: Mapping[str, Any], canonical: str) -> Any:
    """First present, non-empty value among the aliases of ``canonical``."""
    for name in _ALIASES[canonical]:
        value = row.get(name)
        if value is None:
            continue
        if isinstance(value, float) and math.isnan(value):
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def to_number(value: Any) -> float:
    """Parse a numeric field; NaN when missing or unparsable."""
    if value is None:
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return math.nan


def to_epoch_millis(value: Any) -> Optional[int]:
    """Convert a raw timestamp of unknown unit to UTC epoch milliseconds."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if "T" in text or "-" in text:
        try:
            ts = pd.Timestamp(text)
        except (ValueError, TypeError):
            return None
        if ts is pd.NaT:
            return None
        if ts.tz is None:
            ts = ts.tz_localize("UTC")
        return int(ts.value // 1_000_000)

    # integer text stays integral so nanosecond values keep full precision
    try:
        n = int(text)
    except ValueError:
        n = to_number(text)
        if not math.isfinite(n):
            return None
    if n > 1e16:
        return int(n // 1_000_000)
    if n > 1e13:
        return int(n // 1_000)
    if n > 1e10:
        return int(n)
    if n > 1e9:
        return int(n * 1000)
    return int(n)


@dataclass
class NormalizationStats:
    """Counts of rows kept and dropped, by reason."""

    accepted: int = 0
    wrong_symbol: int = 0
    bad_timestamp: int = 0
    non_finite: int = 0

    @property
    def dropped(self) -> int:
        return self.wrong_symbol + self.bad_timestamp + self.non_finite

    def as_dict(self) -> dict[str, int]:
        return {
            "accepted": self.accepted,
            "wrong_symbol": self.wrong_symbol,
            "bad_timestamp": self.bad_timestamp,
            "non_finite": self.non_finite,
        }


@dataclass
class RowNormalizer:
    """Turn raw vendor rows into canonical minute rows for one symbol.

    Bad rows are dropped and counted, never raised: one malformed line must
    not fail the whole file.
    """

    expected_symbol: str
    stats: NormalizationStats = field(default_factory=NormalizationStats)

    def __post_init__(self) -> None:
        self.expected_symbol = self.expected_symbol.strip().upper()

    def normalize(self, row: Mapping[str, Any]) -> Optional[MinuteRow]:
        """Canonical row, or None when the row is dropped."""
        raw_symbol = lookup(row, "symbol")
        if raw_symbol is not None:
            symbol = str(raw_symbol).strip().upper()
            if symbol and symbol != self.expected_symbol:
                self.stats.wrong_symbol += 1
                return None

        ts = to_epoch_millis(lookup(row, "t"))
        if ts is None:
            self.stats.bad_timestamp += 1
            return None

        values = [to_number(lookup(row, name)) for name in ("o", "h", "l", "c", "v")]
        if not all(math.isfinite(x) for x in values):
            self.stats.non_finite += 1
            return None

        self.stats.accepted += 1
        o, h, l, c, v = values
        return MinuteRow(t=ts, o=o, h=h, l=l, c=c, v=v, symbol=self.expected_symbol)

    def normalize_all(self, rows: Iterable[Mapping[str, Any]]) -> list[MinuteRow]:
        out = []
        for row in rows:
            parsed = self.normalize(row)
            if parsed is not None:
                out.append(parsed)
        return out
