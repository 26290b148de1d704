"""Shard compaction: daily shards to monthly, monthly shards to yearly.

Both granularities run the same algorithm:

1. list the source shards of the parent period by key prefix
2. check the first row of each against (symbol, tf, session)
3. drop wrong-symbol rows (or raise in fail-on-mixed mode)
4. append rows in key order, which is chronological order
5. publish atomically: temp key, copy to final key, delete temp key
6. write a manifest with the source version tokens and their checksum
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pyarrow.parquet as pq

from ..errors import MixedSymbolError
from ..schema import SHARD_SCHEMA, Session, Timeframe, bars_to_table
from ..storage import ObjectInfo, ObjectStore, paths
from ..stage1.shard_writer import iter_checked, read_shard_bytes, temp_shard_file
from .manifest import CompactionManifest, SourceFile, checksum_of, write_manifest

LOGGER = logging.getLogger(__name__)


@dataclass
class CompactionResult:
    """Outcome of one published compaction."""

    out_path: str
    manifest_path: str
    row_count: int
    min_ts: Optional[int]
    max_ts: Optional[int]
    checksum: str
    sources: list[SourceFile] = field(default_factory=list)
    filtered_rows: int = 0

    def as_dict(self) -> dict:
        return {
            "out_path": self.out_path,
            "rows": self.row_count,
            "min_ts": self.min_ts,
            "max_ts": self.max_ts,
            "checksum": self.checksum,
            "sources": len(self.sources),
            "filtered": self.filtered_rows,
        }


@dataclass(frozen=True)
class _Plan:
    label: str
    sources: list[ObjectInfo]
    out_path: str
    manifest_path: str
    year: int
    month: Optional[int]


class Compactor:
    """Merge shards of one (symbol, tf, session) into a coarser period."""

    def __init__(self, store: ObjectStore, fail_on_mixed: bool = False):
        """Initialize compactor.

        Args:
            store: Out bucket store (sources and destination)
            fail_on_mixed: Raise MixedSymbolError on any wrong-symbol row
                instead of filtering it
        """
        self.store = store
        self.fail_on_mixed = fail_on_mixed

    def daily_sources(self, timeframe, session, symbol: str, year: int, month: int) -> list[ObjectInfo]:
        prefix = paths.daily_month_prefix(timeframe, session, symbol, year, month)
        return [o for o in self.store.list(prefix) if paths.DAILY_PART_RE.search(o.key)]

    def monthly_sources(self, timeframe, session, symbol: str, year: int) -> list[ObjectInfo]:
        prefix = paths.monthly_year_prefix(timeframe, session, symbol, year)
        return [o for o in self.store.list(prefix) if paths.MONTHLY_PART_RE.search(o.key)]

    def compact_month(
        self,
        timeframe: Timeframe,
        session: Session,
        symbol: str,
        year: int,
        month: int,
    ) -> Optional[CompactionResult]:
        """Compact the daily shards of ``year-month`` into one monthly shard.

        Returns:
            CompactionResult, or None when there was nothing to publish

        Raises:
            ShardHeaderMismatchError: A source shard names another series
            MixedSymbolError: Wrong-symbol row found in fail-on-mixed mode
        """
        timeframe, session = Timeframe(timeframe), Session(session)
        plan = _Plan(
            label=f"[monthly] {symbol} {timeframe.value} {session.value} {year:04d}-{month:02d}",
            sources=self.daily_sources(timeframe, session, symbol, year, month),
            out_path=paths.monthly_shard_path(timeframe, session, symbol, year, month),
            manifest_path=paths.monthly_manifest_path(timeframe, session, symbol, year, month),
            year=year,
            month=month,
        )
        return self._run(plan, timeframe, session, symbol)

    def compact_year(
        self,
        timeframe: Timeframe,
        session: Session,
        symbol: str,
        year: int,
    ) -> Optional[CompactionResult]:
        """Compact the monthly shards of ``year`` into one yearly shard."""
        timeframe, session = Timeframe(timeframe), Session(session)
        plan = _Plan(
            label=f"[yearly] {symbol} {timeframe.value} {session.value} {year:04d}",
            sources=self.monthly_sources(timeframe, session, symbol, year),
            out_path=paths.yearly_shard_path(timeframe, session, symbol, year),
            manifest_path=paths.yearly_manifest_path(timeframe, session, symbol, year),
            year=year,
            month=None,
        )
        return self._run(plan, timeframe, session, symbol)

    def _run(
        self,
        plan: _Plan,
        timeframe: Timeframe,
        session: Session,
        symbol: str,
    ) -> Optional[CompactionResult]:
        if not plan.sources:
            LOGGER.warning("%s no source shards", plan.label)
            return None

        sources = [SourceFile(o.key, o.generation) for o in plan.sources]
        checksum = checksum_of(sources)
        expected = (symbol, timeframe.value, session.value)

        local = temp_shard_file(re.sub(r"[^A-Za-z0-9_-]+", "_", plan.label).strip("_"))
        try:
            rows, filtered, min_ts, max_ts = self._merge(plan, expected, local)
            if rows == 0:
                LOGGER.warning("%s no rows after filtering; nothing published", plan.label)
                return None
            self._publish_atomic(local, plan.out_path, checksum)
        finally:
            local.unlink(missing_ok=True)

        manifest = CompactionManifest(
            tf=timeframe.value,
            session=session.value,
            symbol=symbol,
            year=plan.year,
            month=plan.month,
            row_count=rows,
            min_ts=min_ts,
            max_ts=max_ts,
            source_files=sources,
            checksum=checksum,
        )
        write_manifest(self.store, plan.manifest_path, manifest)

        LOGGER.info("%s -> %d rows -> %s", plan.label, rows, self.store.uri(plan.out_path))
        return CompactionResult(
            out_path=plan.out_path,
            manifest_path=plan.manifest_path,
            row_count=rows,
            min_ts=min_ts,
            max_ts=max_ts,
            checksum=checksum,
            sources=sources,
            filtered_rows=filtered,
        )

    def _merge(
        self,
        plan: _Plan,
        expected: tuple[str, str, str],
        local: Path,
    ) -> tuple[int, int, Optional[int], Optional[int]]:
        symbol = expected[0]
        rows = 0
        filtered_total = 0
        min_ts: Optional[int] = None
        max_ts: Optional[int] = None

        with pq.ParquetWriter(str(local), SHARD_SCHEMA, compression="snappy") as writer:
            for source in plan.sources:
                bars = read_shard_bytes(self.store.get(source.key))
                kept = []
                filtered = 0
                for bar in iter_checked(bars, source.key, expected):
                    if bar.symbol != symbol:
                        if self.fail_on_mixed:
                            raise MixedSymbolError(source.key, bar.symbol, symbol)
                        filtered += 1
                        continue
                    kept.append(bar)
                    min_ts = bar.t if min_ts is None else min(min_ts, bar.t)
                    max_ts = bar.t if max_ts is None else max(max_ts, bar.t)
                if filtered:
                    LOGGER.warning("Filtered %d wrong-symbol rows in %s (expected %s)", filtered, source.key, symbol)
                if kept:
                    writer.write_table(bars_to_table(kept))
                rows += len(kept)
                filtered_total += filtered
        return rows, filtered_total, min_ts, max_ts

    def _publish_atomic(self, local: Path, out_path: str, checksum: str) -> None:
        tmp_key = paths.temp_publish_path(out_path, checksum)
        self.store.upload_from(local, tmp_key)
        try:
            self.store.copy(tmp_key, out_path)
        finally:
            self.store.delete(tmp_key, missing_ok=True)
