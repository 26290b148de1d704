"""Stage 2: Compaction (daily to monthly to yearly) and tail snapshots."""

from .manifest import (
    CompactionManifest,
    SourceFile,
    checksum_of,
    read_manifest,
    write_manifest,
)
from .compactor import CompactionResult, Compactor
from .tail_snapshot import TailResult, TailSnapshotBuilder, select_tail

__all__ = [
    "CompactionManifest",
    "SourceFile",
    "checksum_of",
    "read_manifest",
    "write_manifest",
    "CompactionResult",
    "Compactor",
    "TailResult",
    "TailSnapshotBuilder",
    "select_tail",
]
