"""Symbol universe: allowlist resolution and discovery.

Allowlist sources are tried in order and the first one yielding a
non-empty set wins:

1. an explicit location (CLI ``--allowed-uri``)
2. ``ALLOWED_URI`` from the configuration
3. ``s3://{raw_bucket}/allowed/allowedTickers.json``
4. ``s3://{out_bucket}/allowed/allowedTickers.json``

A location is either ``s3://bucket/key`` or a local file path. The content
is a JSON array, a JSON object with a ``symbols`` or ``tickers`` array, or
a plain comma/whitespace separated list.
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Iterable, Optional

from ..config import PipelineConfig
from ..errors import AllowlistResolutionError, BarStoreError
from ..schema import Session, Timeframe
from ..storage import ObjectStore, paths

LOGGER = logging.getLogger(__name__)

StoreFactory = Callable[[str], ObjectStore]

_LIST_SPLIT_RE = re.compile(r"[,\s]+")
_BASENAME_SYMBOL_RE = re.compile(r"[_.-]")


def _clean(symbols: Iterable) -> list[str]:
    out = {str(s).strip().upper() for s in symbols if s is not None}
    out.discard("")
    return sorted(out)


def parse_allowlist(text: str) -> list[str]:
    """Parse allowlist content into a sorted, de-duplicated symbol list.

    Raises:
        ValueError: Content starts like JSON but does not parse
    """
    stripped = text.strip()
    if stripped.startswith("[") or stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed JSON allowlist: {e}") from e
        if isinstance(data, list):
            return _clean(data)
        if isinstance(data, dict):
            for key in ("symbols", "tickers"):
                if isinstance(data.get(key), list):
                    return _clean(data[key])
            return []
    return _clean(_LIST_SPLIT_RE.split(stripped))


def parse_s3_uri(uri: str) -> tuple[str, str]:
    """Split ``s3://bucket/key`` into (bucket, key)."""
    rest = uri.split("://", 1)[1]
    bucket, _, key = rest.partition("/")
    if not bucket or not key:
        raise ValueError(f"Invalid object URI: {uri!r}")
    return bucket, key


def apply_only_filter(symbols: Iterable[str], only: Optional[Iterable[str] | str]) -> list[str]:
    """Restrict ``symbols`` to the ``only`` subset (None keeps everything)."""
    symbols = _clean(symbols)
    if only is None:
        return symbols
    if isinstance(only, str):
        only = _LIST_SPLIT_RE.split(only)
    wanted = set(_clean(only))
    if not wanted:
        return symbols
    return [s for s in symbols if s in wanted]


@dataclass(frozen=True)
class ResolvedAllowlist:
    location: str
    symbols: list[str]


class AllowlistResolver:
    """Resolve the symbol universe from the first usable allowlist location."""

    def __init__(self, config: PipelineConfig, store_factory: StoreFactory):
        """Initialize resolver.

        Args:
            config: Pipeline configuration (buckets and ``allowed_uri``)
            store_factory: Builds an ObjectStore for a bucket name
        """
        self.config = config
        self.store_factory = store_factory

    def candidates(self, explicit: Optional[str] = None) -> list[str]:
        locations = [
            explicit,
            self.config.allowed_uri,
            paths.allowlist_uri(self.config.raw_bucket),
            paths.allowlist_uri(self.config.out_bucket),
        ]
        seen: list[str] = []
        for loc in locations:
            if loc and loc not in seen:
                seen.append(loc)
        return seen

    def read_location(self, location: str) -> str:
        if "://" in location:
            bucket, key = parse_s3_uri(location)
            return self.store_factory(bucket).get(key).decode("utf-8")
        return Path(location).read_text(encoding="utf-8")

    def resolve(self, explicit: Optional[str] = None) -> ResolvedAllowlist:
        """Return the first non-empty allowlist.

        Raises:
            AllowlistResolutionError: No location yielded any symbol
        """
        tried = self.candidates(explicit)
        for location in tried:
            try:
                symbols = parse_allowlist(self.read_location(location))
            except (BarStoreError, OSError, ValueError) as e:
                LOGGER.warning("Allowlist probe failed for %s: %s", location, e)
                continue
            if symbols:
                LOGGER.info("Allowlist: %s (n=%d)", location, len(symbols))
                return ResolvedAllowlist(location=location, symbols=symbols)
            LOGGER.warning("Allowlist at %s is empty", location)
        raise AllowlistResolutionError(
            "Could not resolve a non-empty allowlist. Pass --allowed-uri, set ALLOWED_URI, "
            "or place allowed/allowedTickers.json in the raw or out bucket. Tried: " + ", ".join(tried)
        )


def _symbol_from_basename(key: str) -> str:
    base = key.rsplit("/", 1)[-1]
    return _BASENAME_SYMBOL_RE.split(base, 1)[0].upper()


def discover_symbols_for_date(
    raw_store: ObjectStore,
    day: date,
    by_date_base: Optional[str] = "minute",
    by_ticker_base: Optional[str] = "minute_by_ticker",
    concurrency: int = 32,
    max_symbols: Optional[int] = None,
) -> list[str]:
    """Symbols with at least one raw file for ``day``.

    Merges the by-date layout (file names parsed to symbols) with the
    by-ticker layout (every symbol folder probed for a file of that date).

    Args:
        raw_store: Raw bucket store
        day: Calendar date
        by_date_base: Prefix of the by-date layout (None skips it)
        by_ticker_base: Prefix of the by-ticker layout (None skips it)
        concurrency: Parallel probes of by-ticker folders
        max_symbols: Optional cap on the result size

    Returns:
        Sorted symbol list
    """
    found: set[str] = set()

    if by_date_base:
        for obj in raw_store.list(f"{by_date_base}/{day.isoformat()}/"):
            sym = _symbol_from_basename(obj.key)
            if sym:
                found.add(sym)

    if by_ticker_base and not (max_symbols and len(found) >= max_symbols):
        folders = raw_store.list_prefixes(f"{by_ticker_base.rstrip('/')}/")
        symbols = [p.rstrip("/").rsplit("/", 1)[-1] for p in folders]
        symbols = [s for s in symbols if s and s.upper() not in found]

        def has_file(sym: str) -> Optional[str]:
            try:
                if raw_store.list(paths.raw_by_ticker_prefix(by_ticker_base, day, sym)):
                    return sym.upper()
            except BarStoreError as e:
                LOGGER.debug("Discovery probe failed for %s: %s", sym, e)
            return None

        with ThreadPoolExecutor(max_workers=max(1, min(concurrency, len(symbols) or 1))) as ex:
            for sym in ex.map(has_file, symbols):
                if sym:
                    found.add(sym)

    result = sorted(found)
    if max_symbols:
        result = result[:max_symbols]
    LOGGER.info("Discovered %d symbols for %s", len(result), day.isoformat())
    return result


def discover_shard_symbols(store: ObjectStore, timeframe: Timeframe, session: Session) -> list[str]:
    """Symbols with daily shards for (timeframe, session), from ``symbol=`` folders."""
    prefix = paths.shard_series_prefix("agg", timeframe, session)
    symbols = []
    for folder in store.list_prefixes(prefix):
        sym = paths.symbol_from_prefix(folder)
        if sym:
            symbols.append(sym)
    return sorted(set(symbols))
