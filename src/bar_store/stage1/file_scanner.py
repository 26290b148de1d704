"""Raw minute file discovery in the raw bucket.

Two vendor layouts are supported, tried in order:

1. by date:   ``{by_date_base}/{yyyy-mm-dd}/{SYMBOL}.csv`` then ``.csv.gz``
2. by ticker: ``{by_ticker_base}/{SYMBOL}/{yyyy}/{yyyy-mm-dd}*.csv[.gz]``

Matching is exact on the symbol path segment, so ``NTR`` never picks up
``NTRA.csv``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ..storage import ObjectStore, paths

LOGGER = logging.getLogger(__name__)

RAW_SUFFIXES = (".csv", ".csv.gz")


@dataclass(frozen=True)
class RawFile:
    """A raw minute file located in the raw bucket."""

    key: str
    symbol: str
    day: date

    @property
    def compressed(self) -> bool:
        return self.key.endswith(".gz")


class FileScanner:
    """Locate raw minute files for a (symbol, day)."""

    def __init__(
        self,
        store: ObjectStore,
        by_date_base: Optional[str] = "minute",
        by_ticker_base: Optional[str] = "minute_by_ticker",
    ):
        """Initialize scanner.

        Args:
            store: Raw bucket store
            by_date_base: Prefix of the by-date layout (None disables it)
            by_ticker_base: Prefix of the by-ticker layout (None disables it)
        """
        self.store = store
        self.by_date_base = by_date_base
        self.by_ticker_base = by_ticker_base

    def find(self, symbol: str, day: date) -> list[RawFile]:
        """Return the raw files for ``symbol`` on ``day`` (possibly empty)."""
        symbol = symbol.upper()

        if self.by_date_base:
            for key in paths.raw_by_date_candidates(self.by_date_base, day, symbol):
                if self.store.exists(key):
                    LOGGER.debug("Using exact file: %s", self.store.uri(key))
                    return [RawFile(key=key, symbol=symbol, day=day)]

        if self.by_ticker_base:
            prefix = paths.raw_by_ticker_prefix(self.by_ticker_base, day, symbol)
            found = [
                RawFile(key=obj.key, symbol=symbol, day=day)
                for obj in self.store.list(prefix)
                if obj.key.endswith(RAW_SUFFIXES)
            ]
            if found:
                return found

        LOGGER.warning("No minute file found for %s %s", symbol, day.isoformat())
        return []
