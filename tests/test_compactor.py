"""Tests for monthly and yearly compaction."""

import io
from dataclasses import replace
from datetime import date

import pyarrow.parquet as pq
import pytest

from bar_store.errors import MixedSymbolError, ShardHeaderMismatchError
from bar_store.schema import bars_to_table
from bar_store.stage1.shard_writer import read_shard
from bar_store.stage2.compactor import Compactor
from bar_store.stage2.manifest import SourceFile, checksum_of, read_manifest
from bar_store.storage import ObjectInfo, paths

from conftest import et_ms

MONTHLY = "agg-monthly/5m/session=RTH/symbol=AAPL/year=2024/month=08/part-00001.parquet"
MONTHLY_MANIFEST = "manifests/monthly/2024-08/5m/session=RTH/AAPL.json"


def put_raw_shard(store, key, bars):
    """Write bars without the writer's homogeneity check."""
    buf = io.BytesIO()
    pq.write_table(bars_to_table(bars), buf)
    store.put(key, buf.getvalue())


class TestChecksum:
    """Tests for the manifest checksum."""

    def test_order_independent(self):
        a = [SourceFile("a", "1"), SourceFile("b", "2")]
        assert checksum_of(a) == checksum_of(list(reversed(a)))

    def test_generation_change(self):
        assert checksum_of([SourceFile("a", "1")]) != checksum_of([SourceFile("a", "2")])

    def test_accepts_listing_entries(self):
        assert checksum_of([ObjectInfo("a", "1", 10)]) == checksum_of([SourceFile("a", "1")])

    def test_known_value(self):
        # 5381 with no input
        assert checksum_of([]) == "1505"


class TestCompactMonth:
    """Tests for daily to monthly compaction."""

    def test_rows_and_bounds(self, out_store, publish_day):
        days = [date(2024, 8, 5), date(2024, 8, 6), date(2024, 8, 7)]
        published = [publish_day(d, count=4) for d in days]
        publish_day(date(2024, 9, 3), count=2)

        result = Compactor(out_store).compact_month("5m", "RTH", "AAPL", 2024, 8)

        assert result.out_path == MONTHLY
        assert result.row_count == 12
        assert result.min_ts == published[0][0].t
        assert result.max_ts == published[-1][-1].t
        bars = read_shard(out_store, MONTHLY)
        assert bars == [b for day in published for b in day]

    def test_manifest(self, out_store, publish_day):
        publish_day(date(2024, 8, 5))
        publish_day(date(2024, 8, 6))
        result = Compactor(out_store).compact_month("5m", "RTH", "AAPL", 2024, 8)

        manifest = read_manifest(out_store, MONTHLY_MANIFEST)
        assert manifest.row_count == 6
        assert manifest.month == 8
        assert manifest.checksum == result.checksum
        assert [s.object for s in manifest.source_files] == [
            paths.daily_shard_path("5m", "RTH", "AAPL", date(2024, 8, 5)),
            paths.daily_shard_path("5m", "RTH", "AAPL", date(2024, 8, 6)),
        ]
        assert manifest.created_at.endswith("Z")

    def test_checksum_stable_then_changes(self, out_store, publish_day):
        publish_day(date(2024, 8, 5))
        compactor = Compactor(out_store)
        first = compactor.compact_month("5m", "RTH", "AAPL", 2024, 8)
        again = compactor.compact_month("5m", "RTH", "AAPL", 2024, 8)
        assert first.checksum == again.checksum

        publish_day(date(2024, 8, 6))
        changed = compactor.compact_month("5m", "RTH", "AAPL", 2024, 8)
        assert changed.checksum != first.checksum

    def test_temp_key_removed(self, out_store, publish_day):
        publish_day(date(2024, 8, 5))
        Compactor(out_store).compact_month("5m", "RTH", "AAPL", 2024, 8)
        assert not [k for k in out_store.keys() if ".tmp-" in k]

    def test_no_sources(self, out_store):
        assert Compactor(out_store).compact_month("5m", "RTH", "AAPL", 2024, 8) is None
        assert out_store.keys() == []

    def test_header_mismatch_raises(self, out_store, publish_day):
        publish_day(date(2024, 8, 5), symbol="AAPL", bar_symbol="MSFT")
        with pytest.raises(ShardHeaderMismatchError):
            Compactor(out_store).compact_month("5m", "RTH", "AAPL", 2024, 8)
        assert not out_store.exists(MONTHLY)

    def test_wrong_timeframe_raises(self, out_store, publish_day):
        bars = publish_day(date(2024, 8, 5))
        key = paths.daily_shard_path("15m", "RTH", "AAPL", date(2024, 8, 6))
        put_raw_shard(out_store, key, bars)
        with pytest.raises(ShardHeaderMismatchError):
            Compactor(out_store).compact_month("15m", "RTH", "AAPL", 2024, 8)


class TestMixedSymbols:
    """Wrong-symbol rows after a valid first row."""

    def mixed(self, out_store, make_bars):
        day = date(2024, 8, 5)
        bars = make_bars(et_ms(day, "09:30"), 3)
        bars[2] = replace(bars[2], symbol="MSFT")
        put_raw_shard(out_store, paths.daily_shard_path("5m", "RTH", "AAPL", day), bars)

    def test_filtered_by_default(self, out_store, make_bars):
        self.mixed(out_store, make_bars)
        result = Compactor(out_store).compact_month("5m", "RTH", "AAPL", 2024, 8)
        assert result.row_count == 2
        assert result.filtered_rows == 1
        assert {b.symbol for b in read_shard(out_store, MONTHLY)} == {"AAPL"}

    def test_strict_mode_raises(self, out_store, make_bars):
        self.mixed(out_store, make_bars)
        with pytest.raises(MixedSymbolError):
            Compactor(out_store, fail_on_mixed=True).compact_month("5m", "RTH", "AAPL", 2024, 8)
        assert not out_store.exists(MONTHLY)


class TestCompactYear:
    """Tests for monthly to yearly roll-up."""

    def test_rolls_up_months(self, out_store, publish_day):
        compactor = Compactor(out_store)
        for month in (1, 2, 3):
            publish_day(date(2024, month, 10), count=2)
            compactor.compact_month("5m", "RTH", "AAPL", 2024, month)

        result = compactor.compact_year("5m", "RTH", "AAPL", 2024)

        assert result.out_path == "agg-yearly/5m/session=RTH/symbol=AAPL/year=2024/part-00001.parquet"
        assert result.row_count == 6
        assert len(result.sources) == 3
        bars = read_shard(out_store, result.out_path)
        assert [b.t for b in bars] == sorted(b.t for b in bars)

        manifest = read_manifest(out_store, "manifests/yearly/2024/5m/session=RTH/AAPL.json")
        assert manifest.month is None
        assert manifest.row_count == 6

    def test_ignores_other_years(self, out_store, publish_day):
        compactor = Compactor(out_store)
        publish_day(date(2023, 12, 1))
        compactor.compact_month("5m", "RTH", "AAPL", 2023, 12)
        assert compactor.compact_year("5m", "RTH", "AAPL", 2024) is None
