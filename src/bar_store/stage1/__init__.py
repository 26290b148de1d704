"""Stage 1: Raw minute ingestion and daily shard aggregation."""

from .file_scanner import FileScanner, RawFile
from .raw_reader import RawReader
from .row_normalizer import NormalizationStats, RowNormalizer, to_epoch_millis
from .minute_aggregator import (
    AggregationResult,
    MinuteAggregator,
    QualityReport,
    SessionWindow,
    bucket_start_ms,
    session_window,
)
from .shard_writer import (
    EMPTY,
    EXISTS,
    WRITTEN,
    PublishResult,
    ShardWriter,
    read_shard,
    read_shard_bytes,
    write_shard_file,
)
from .pipeline import (
    AggregationPass,
    DailyAggregationPipeline,
    DayResult,
    default_passes,
    passes_for,
)

__all__ = [
    "FileScanner",
    "RawFile",
    "RawReader",
    "NormalizationStats",
    "RowNormalizer",
    "to_epoch_millis",
    "AggregationResult",
    "MinuteAggregator",
    "QualityReport",
    "SessionWindow",
    "bucket_start_ms",
    "session_window",
    "EMPTY",
    "EXISTS",
    "WRITTEN",
    "PublishResult",
    "ShardWriter",
    "read_shard",
    "read_shard_bytes",
    "write_shard_file",
    "AggregationPass",
    "DailyAggregationPipeline",
    "DayResult",
    "default_passes",
    "passes_for",
]
