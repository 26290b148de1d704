"""Pipeline configuration.

Values come from environment variables (see ``ENV_VARS``) and can be
overlaid by a YAML file whose keys are the ``PipelineConfig`` field names.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .schema import Timeframe, parse_timeframes

LOGGER = logging.getLogger(__name__)


class DayBarTimestamp(Enum):
    """Which instant a ``1d`` bar is stamped with."""

    SESSION_OPEN = "SESSION_OPEN"
    SESSION_CLOSE = "SESSION_CLOSE"


DEFAULT_RAW_BUCKET = "set-up-nicely-flatfiles"
DEFAULT_OUT_BUCKET = "set-up-nicely-agg"

# field name -> environment variable(s), first one set wins
ENV_VARS: dict[str, tuple[str, ...]] = {
    "raw_bucket": ("RAW_BUCKET",),
    "out_bucket": ("OUT_BUCKET", "GCS_BUCKET_PARQUET"),
    "allowed_uri": ("ALLOWED_URI",),
    "by_date_base": ("BY_DATE_BASE",),
    "by_ticker_base": ("BY_TICKER_ALT",),
    "concurrency": ("CONCURRENCY",),
    "discovery_concurrency": ("DISCOVERY_SYMBOL_CONCURRENCY",),
    "compute_vwap": ("COMPUTE_VWAP",),
    "drop_partial_final_bucket": ("DROP_PARTIAL_FINAL_BUCKET",),
    "day_bar_timestamp": ("DAY_BAR_TIMESTAMP_MODE",),
    "skip_if_exists": ("SKIP_IF_EXISTS",),
    "intraday_timeframes": ("INTRADAY_TFS",),
    "do_extended_intraday": ("DO_EXT_INTRADAY",),
    "do_rth_daily": ("DO_1D_RTH",),
    "do_extended_daily": ("DO_1D_EXT",),
    "use_trading_calendar": ("USE_TRADING_CALENDAR",),
    "tail_last_n": ("TAIL_LAST_N",),
    "tail_lookback_days": ("TAIL_LOOKBACK_DAYS",),
    "retry_attempts": ("STORAGE_RETRY_ATTEMPTS",),
    "retry_base_delay": ("STORAGE_RETRY_BASE_DELAY",),
    "retry_max_delay": ("STORAGE_RETRY_MAX_DELAY",),
    "s3_endpoint_url": ("S3_ENDPOINT_URL",),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for aggregation, compaction and tail runs.

    Attributes:
        raw_bucket: Bucket holding vendor minute files and the allowlist.
        out_bucket: Bucket receiving shards, manifests and tails.
        allowed_uri: Explicit allowlist location (``s3://bucket/key`` or a local path).
        by_date_base: Raw layout ``{base}/{date}/{SYMBOL}.csv[.gz]``.
        by_ticker_base: Raw layout ``{base}/{SYMBOL}/{yyyy}/{date}*.csv[.gz]``.
        concurrency: Worker pool size for orchestrated runs.
        discovery_concurrency: Parallel probes during per-date symbol discovery.
        compute_vwap: Emit the ``vw`` column.
        drop_partial_final_bucket: Drop an incomplete trailing RTH intraday bucket.
        day_bar_timestamp: Stamp ``1d`` bars at session open or close.
        skip_if_exists: Skip a day unit when every target shard already exists.
        intraday_timeframes: Timeframes of the EXTENDED intraday pass.
        use_trading_calendar: Skip exchange holidays and honour early closes.
        tail_last_n: Default bar count for tail snapshots.
        tail_lookback_days: Calendar days scanned backwards for a tail.
    """

    raw_bucket: str = DEFAULT_RAW_BUCKET
    out_bucket: str = DEFAULT_OUT_BUCKET
    allowed_uri: Optional[str] = None
    by_date_base: str = "minute"
    by_ticker_base: Optional[str] = "minute_by_ticker"

    concurrency: int = 8
    discovery_concurrency: int = 32

    compute_vwap: bool = True
    drop_partial_final_bucket: bool = True
    day_bar_timestamp: DayBarTimestamp = DayBarTimestamp.SESSION_CLOSE
    skip_if_exists: bool = False
    intraday_timeframes: tuple[Timeframe, ...] = (
        Timeframe.M1,
        Timeframe.M5,
        Timeframe.M15,
        Timeframe.M30,
        Timeframe.H1,
        Timeframe.H4,
    )
    do_extended_intraday: bool = True
    do_rth_daily: bool = True
    do_extended_daily: bool = True
    use_trading_calendar: bool = True

    tail_last_n: int = 300
    tail_lookback_days: int = 80

    retry_attempts: int = 5
    retry_base_delay: float = 0.5
    retry_max_delay: float = 5.0
    s3_endpoint_url: Optional[str] = None

    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a config from environment variables, defaults elsewhere."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, keys in ENV_VARS.items():
            for key in keys:
                raw = environ.get(key)
                if raw is not None and raw != "":
                    values[name] = raw
                    break
        return cls().with_overrides(values)

    def with_overrides(self, values: Mapping[str, Any]) -> "PipelineConfig":
        """Return a copy with ``values`` coerced onto the matching fields.

        Unknown keys are kept in ``extra`` with a warning.
        """
        known = {f.name: f for f in fields(self) if f.name != "extra"}
        updates: dict[str, Any] = {}
        extra = dict(self.extra)
        for key, value in values.items():
            if key not in known:
                LOGGER.warning("Unknown config key %r ignored", key)
                extra[key] = value
                continue
            updates[key] = _coerce(key, value, getattr(self, key))
        return replace(self, extra=extra, **updates)

    def validate(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.tail_last_n < 1:
            raise ValueError("tail_last_n must be >= 1")
        if self.tail_lookback_days < 1:
            raise ValueError("tail_lookback_days must be >= 1")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")


def _coerce(name: str, value: Any, current: Any) -> Any:
    if name == "day_bar_timestamp":
        if isinstance(value, DayBarTimestamp):
            return value
        return DayBarTimestamp(str(value).strip().upper())
    if name == "intraday_timeframes":
        return tuple(parse_timeframes(value))
    if isinstance(current, bool):
        return parse_bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if value is None:
        return None
    return str(value)


def load_config(
    config_path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """Load configuration from the environment, overlaid by a YAML file."""
    config = PipelineConfig.from_env(environ)
    if config_path is not None:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        config = config.with_overrides(data)
    config.validate()
    return config
