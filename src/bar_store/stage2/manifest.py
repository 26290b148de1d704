"""Compaction manifests.

A manifest records which source shards (key + version token) produced a
compacted shard, plus a checksum over that set so a later run can tell
whether anything changed.

Checksum: ``"key:generation"`` strings, sorted, joined with ``|``, hashed
with a 32-bit rolling ``h = (h * 33) ^ ch`` starting at 5381, rendered as
lowercase hex. Change detection only; not cryptographic.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..storage import ObjectInfo, ObjectStore


@dataclass(frozen=True)
class SourceFile:
    object: str
    generation: str


def checksum_of(files: Iterable[SourceFile | ObjectInfo]) -> str:
    """Order-independent checksum of (key, generation) pairs."""
    entries = []
    for f in files:
        key = f.object if isinstance(f, SourceFile) else f.key
        entries.append(f"{key}:{f.generation}")
    h = 5381
    for ch in "|".join(sorted(entries)):
        h = ((h * 33) ^ ord(ch)) & 0xFFFFFFFF
    return format(h, "x")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class CompactionManifest:
    """Provenance record of one compacted shard.

    ``month`` is None for yearly manifests.
    """

    tf: str
    session: str
    symbol: str
    year: int
    month: Optional[int]
    row_count: int
    min_ts: Optional[int]
    max_ts: Optional[int]
    source_files: list[SourceFile] = field(default_factory=list)
    checksum: str = ""
    created_at: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tf": self.tf,
            "session": self.session,
            "symbol": self.symbol,
            "year": self.year,
            "month": self.month,
            "rowCount": self.row_count,
            "minTs": self.min_ts,
            "maxTs": self.max_ts,
            "sourceDailyFiles": [{"object": s.object, "generation": s.generation} for s in self.source_files],
            "createdAt": self.created_at,
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompactionManifest":
        sources = data.get("sourceDailyFiles") or data.get("sourceFiles") or []
        return cls(
            tf=str(data["tf"]),
            session=str(data["session"]),
            symbol=str(data["symbol"]),
            year=int(data["year"]),
            month=None if data.get("month") is None else int(data["month"]),
            row_count=int(data["rowCount"]),
            min_ts=None if data.get("minTs") is None else int(data["minTs"]),
            max_ts=None if data.get("maxTs") is None else int(data["maxTs"]),
            source_files=[SourceFile(str(s["object"]), str(s["generation"])) for s in sources],
            checksum=str(data.get("checksum", "")),
            created_at=str(data.get("createdAt", "")),
        )


def write_manifest(store: ObjectStore, key: str, manifest: CompactionManifest) -> None:
    body = json.dumps(manifest.to_dict(), indent=2).encode("utf-8")
    store.put(key, body, content_type="application/json")


def read_manifest(store: ObjectStore, key: str) -> CompactionManifest:
    return CompactionManifest.from_dict(json.loads(store.get(key).decode("utf-8")))
