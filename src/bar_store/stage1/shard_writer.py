"""Parquet shard IO.

Shards are the on-store contract between stages. A daily shard is published
with a create-if-absent write: if the object already exists the publish is a
no-op, which makes re-runs and overlapping backfills safe.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterator, Optional, Sequence

import pyarrow.parquet as pq

from ..errors import ObjectAlreadyExistsError, ShardHeaderMismatchError, ShardSchemaError
from ..schema import CandleBar, Session, Timeframe, bars_to_table, table_to_bars
from ..storage import ObjectStore, paths

LOGGER = logging.getLogger(__name__)

WRITTEN = "written"
EXISTS = "exists"
EMPTY = "empty"


@dataclass(frozen=True)
class PublishResult:
    path: str
    status: str
    rows: int


def validate_shard(bars: Sequence[CandleBar]) -> None:
    """Check shard homogeneity before anything is written.

    All rows share one (symbol, tf, session) and timestamps strictly increase.
    """
    if not bars:
        return
    header = bars[0].header
    prev = None
    for bar in bars:
        if bar.header != header:
            raise ShardSchemaError(f"Non-homogeneous shard: {bar.header} differs from {header}")
        if prev is not None and bar.t <= prev:
            raise ShardSchemaError(f"Timestamps not strictly increasing at t={bar.t}")
        prev = bar.t


def temp_shard_file(tag: str) -> Path:
    """Process-unique local temp file; the caller deletes it."""
    fd, name = tempfile.mkstemp(prefix=f"{tag}-", suffix=f".{paths.EXT}")
    os.close(fd)
    return Path(name)


def write_shard_file(bars: Sequence[CandleBar], path: str | Path) -> Path:
    """Write bars to a local Parquet file in shard schema."""
    path = Path(path)
    pq.write_table(bars_to_table(bars), str(path), compression="snappy")
    return path


def read_shard_bytes(data: bytes) -> list[CandleBar]:
    return table_to_bars(pq.read_table(io.BytesIO(data)))


def iter_checked(
    bars: Sequence[CandleBar],
    key: str,
    expected: tuple[str, str, str],
) -> Iterator[CandleBar]:
    """Yield bars after verifying the first row's header.

    Raises ShardHeaderMismatchError when the first row names another
    symbol, timeframe or session: the shard is corrupt or misrouted.
    """
    for i, bar in enumerate(bars):
        if i == 0 and bar.header != expected:
            raise ShardHeaderMismatchError(key, bar.header, expected)
        yield bar


def read_shard(
    store: ObjectStore,
    key: str,
    expected: Optional[tuple[str, str, str]] = None,
) -> list[CandleBar]:
    """Download and decode one shard.

    With ``expected`` set, the header is checked and rows whose symbol
    differs from the expected symbol are filtered out.
    """
    bars = read_shard_bytes(store.get(key))
    if expected is None:
        return bars
    return [b for b in iter_checked(bars, key, expected) if b.symbol == expected[0]]


class ShardWriter:
    """Publish aggregated bars as daily shards."""

    def __init__(self, store: ObjectStore):
        """Initialize writer.

        Args:
            store: Destination object store (out bucket)
        """
        self.store = store

    def publish(self, bars: Sequence[CandleBar], key: str, tag: str) -> PublishResult:
        """Create-if-absent publish of ``bars`` at ``key``.

        A local temp file is always written first and removed on every exit
        path.
        """
        if not bars:
            return PublishResult(path=key, status=EMPTY, rows=0)
        validate_shard(bars)

        tmp = temp_shard_file(tag)
        try:
            write_shard_file(bars, tmp)
            self.store.upload_from(tmp, key, if_absent=True)
            status = WRITTEN
        except ObjectAlreadyExistsError:
            LOGGER.debug("Shard already present: %s", key)
            status = EXISTS
        finally:
            tmp.unlink(missing_ok=True)
        return PublishResult(path=key, status=status, rows=len(bars))

    def publish_day(
        self,
        bars: Sequence[CandleBar],
        symbol: str,
        timeframe: Timeframe,
        session: Session,
        day: date,
    ) -> PublishResult:
        key = paths.daily_shard_path(timeframe, session, symbol, day)
        tag = f"{symbol}_{day.isoformat()}_{Timeframe(timeframe).value}_{Session(session).value}"
        return self.publish(bars, key, tag)
