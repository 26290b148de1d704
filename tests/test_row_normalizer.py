"""Tests for raw row normalization."""

import math

import pytest

from bar_store.stage1.row_normalizer import RowNormalizer, lookup, to_epoch_millis

MS = 1_722_951_000_000  # 2024-08-06 13:30:00 UTC


class TestTimestampUnits:
    """Tests for timestamp unit inference."""

    @pytest.mark.parametrize(
        "raw",
        [MS * 1_000_000, MS * 1_000, MS, MS // 1000],
        ids=["ns", "us", "ms", "s"],
    )
    def test_numeric_units(self, raw):
        assert to_epoch_millis(raw) == MS

    def test_string_numeric(self):
        assert to_epoch_millis(str(MS * 1_000_000)) == MS

    def test_iso_naive_is_utc(self):
        assert to_epoch_millis("2024-08-06T13:30:00") == MS

    def test_iso_with_offset(self):
        assert to_epoch_millis("2024-08-06T09:30:00-04:00") == MS

    def test_small_values_treated_as_ms(self):
        assert to_epoch_millis(123456) == 123456

    def test_unparsable(self):
        assert to_epoch_millis("not a time") is None
        assert to_epoch_millis("") is None
        assert to_epoch_millis(None) is None


class TestFieldAliases:
    """Tests for header name variants."""

    def test_first_alias_wins(self):
        row = {"timestamp": "1", "window_start": "2"}
        assert lookup(row, "t") == "1"

    def test_blank_values_skipped(self):
        row = {"timestamp": "", "window_start": "2", "open": float("nan"), "o": "5"}
        assert lookup(row, "t") == "2"
        assert lookup(row, "o") == "5"

    def test_short_names(self):
        n = RowNormalizer("AAPL")
        bar = n.normalize({"symbol": "aapl", "t": MS, "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 10})
        assert bar is not None
        assert bar.symbol == "AAPL"
        assert (bar.o, bar.h, bar.l, bar.c, bar.v) == (1.0, 2.0, 0.5, 1.5, 10.0)


class TestDrops:
    """Bad rows are dropped and counted, never raised."""

    def base(self, **kw):
        row = {
            "ticker": "AAPL",
            "window_start": str(MS * 1_000_000),
            "open": "1",
            "high": "2",
            "low": "0.5",
            "close": "1.5",
            "volume": "10",
        }
        row.update(kw)
        return row

    def test_wrong_symbol(self):
        n = RowNormalizer("AAPL")
        assert n.normalize(self.base(ticker="MSFT")) is None
        assert n.stats.wrong_symbol == 1

    def test_missing_symbol_accepted(self):
        n = RowNormalizer("AAPL")
        row = self.base()
        del row["ticker"]
        assert n.normalize(row) is not None

    def test_bad_timestamp(self):
        n = RowNormalizer("AAPL")
        assert n.normalize(self.base(window_start="garbage")) is None
        assert n.stats.bad_timestamp == 1

    @pytest.mark.parametrize("field", ["open", "high", "low", "close", "volume"])
    def test_non_finite(self, field):
        n = RowNormalizer("AAPL")
        assert n.normalize(self.base(**{field: "inf"})) is None
        assert n.stats.non_finite == 1

    def test_missing_price(self):
        n = RowNormalizer("AAPL")
        row = self.base()
        del row["close"]
        assert n.normalize(row) is None
        assert n.stats.non_finite == 1

    def test_normalize_all_counts(self):
        n = RowNormalizer("AAPL")
        rows = [self.base(), self.base(ticker="X"), self.base(open="nan"), self.base()]
        out = n.normalize_all(rows)
        assert len(out) == 2
        assert n.stats.as_dict() == {"accepted": 2, "wrong_symbol": 1, "bad_timestamp": 0, "non_finite": 1}
        assert n.stats.dropped == 2
        assert all(math.isfinite(r.o) for r in out)
