"""Raw CSV reader for vendor minute files.

Files are read whole (one symbol-day is small), optionally gunzipped, with
every column kept as a string so the row normalizer sees the original text.
"""

from __future__ import annotations

import io
import logging
from typing import Any, Iterator

import pandas as pd

from ..schema import MinuteRow
from ..storage import ObjectStore
from .file_scanner import RawFile
from .row_normalizer import RowNormalizer

LOGGER = logging.getLogger(__name__)


class RawReader:
    """Download and parse raw minute files."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def read_frame(self, raw_file: RawFile) -> pd.DataFrame:
        """Read one raw file into a string-typed DataFrame.

        An empty or header-only file yields an empty DataFrame.
        """
        data = self.store.get(raw_file.key)
        try:
            df = pd.read_csv(
                io.BytesIO(data),
                dtype=str,
                compression="gzip" if raw_file.compressed else None,
                skipinitialspace=True,
                skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        df.columns = [str(c).strip().lower() for c in df.columns]
        return df

    def iter_records(self, raw_file: RawFile) -> Iterator[dict[str, Any]]:
        df = self.read_frame(raw_file)
        for record in df.to_dict(orient="records"):
            yield record

    def load_minutes(self, files: list[RawFile], symbol: str) -> list[MinuteRow]:
        """Read and normalize all rows for ``symbol`` across ``files``."""
        normalizer = RowNormalizer(expected_symbol=symbol)
        rows: list[MinuteRow] = []
        for raw_file in files:
            rows.extend(normalizer.normalize_all(self.iter_records(raw_file)))
        if normalizer.stats.dropped:
            LOGGER.info("Dropped %d rows for %s: %s", normalizer.stats.dropped, symbol, normalizer.stats.as_dict())
        LOGGER.debug("Loaded %d minute rows for %s from %d file(s)", len(rows), symbol, len(files))
        return rows
