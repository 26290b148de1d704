"""Minute-bar aggregation, compaction and snapshot pipeline."""

__version__ = "0.1.0"
