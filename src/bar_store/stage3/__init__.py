"""Stage 3: Read path over published shards."""

from .loader import BarLoader, ShardRef, Tier, bars_to_frame

__all__ = [
    "BarLoader",
    "ShardRef",
    "Tier",
    "bars_to_frame",
]
