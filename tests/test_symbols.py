"""Tests for allowlist resolution and symbol discovery."""

from datetime import date
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from bar_store.config import PipelineConfig
from bar_store.errors import AllowlistResolutionError
from bar_store.stage0.symbols import (
    AllowlistResolver,
    apply_only_filter,
    discover_shard_symbols,
    discover_symbols_for_date,
    parse_allowlist,
    parse_s3_uri,
)
from bar_store.storage import InMemoryObjectStore, RetryPolicy, S3ObjectStore

DAY = date(2024, 8, 6)


@pytest.fixture
def buckets():
    stores = {}

    def factory(bucket):
        if bucket not in stores:
            stores[bucket] = InMemoryObjectStore(bucket)
        return stores[bucket]

    return factory


class TestParseAllowlist:
    """Tests for allowlist content formats."""

    def test_json_array(self):
        assert parse_allowlist('["msft", "AAPL", "aapl"]') == ["AAPL", "MSFT"]

    def test_json_object(self):
        assert parse_allowlist('{"symbols": ["b", "a"]}') == ["A", "B"]
        assert parse_allowlist('{"tickers": ["x"]}') == ["X"]

    def test_json_object_without_list(self):
        assert parse_allowlist('{"other": 1}') == []

    def test_plain_list(self):
        assert parse_allowlist("aapl, msft\nNVDA  tsla,,") == ["AAPL", "MSFT", "NVDA", "TSLA"]

    def test_empty(self):
        assert parse_allowlist("  \n") == []

    @pytest.mark.parametrize("text", ['["AAPL", "MSFT"', '{"symbols": ["AAPL"', "[AAPL, MSFT]"])
    def test_broken_json_rejected(self, text):
        """JSON-looking content that does not parse is never split as a plain list."""
        with pytest.raises(ValueError):
            parse_allowlist(text)


class TestHelpers:
    """Tests for URI parsing and the only filter."""

    def test_parse_s3_uri(self):
        assert parse_s3_uri("s3://raw/allowed/allowedTickers.json") == ("raw", "allowed/allowedTickers.json")

    def test_parse_s3_uri_without_key(self):
        with pytest.raises(ValueError):
            parse_s3_uri("s3://raw")

    def test_only_filter(self):
        assert apply_only_filter(["AAPL", "MSFT", "NVDA"], "msft,nvda,zzz") == ["MSFT", "NVDA"]
        assert apply_only_filter(["AAPL"], None) == ["AAPL"]
        assert apply_only_filter(["AAPL"], ["tsla"]) == []


class TestResolver:
    """Tests for allowlist resolution order."""

    def config(self, **kw):
        return PipelineConfig(raw_bucket="raw", out_bucket="out", **kw)

    def test_candidate_order(self, buckets):
        resolver = AllowlistResolver(self.config(allowed_uri="s3://cfg/list.json"), buckets)
        assert resolver.candidates("s3://cli/list.json") == [
            "s3://cli/list.json",
            "s3://cfg/list.json",
            "s3://raw/allowed/allowedTickers.json",
            "s3://out/allowed/allowedTickers.json",
        ]

    def test_explicit_wins(self, buckets):
        buckets("cli").put("list.json", b'["AAPL"]')
        buckets("raw").put("allowed/allowedTickers.json", b'["MSFT"]')
        resolved = AllowlistResolver(self.config(), buckets).resolve("s3://cli/list.json")
        assert resolved.symbols == ["AAPL"]
        assert resolved.location == "s3://cli/list.json"

    def test_falls_through_missing_and_empty(self, buckets):
        buckets("cfg").put("list.json", b"[]")
        buckets("out").put("allowed/allowedTickers.json", b"nvda")
        resolver = AllowlistResolver(self.config(allowed_uri="s3://cfg/list.json"), buckets)
        resolved = resolver.resolve("s3://cli/missing.json")
        assert resolved.symbols == ["NVDA"]
        assert resolved.location == "s3://out/allowed/allowedTickers.json"

    def test_local_path(self, buckets, tmp_path):
        path = tmp_path / "allowed.txt"
        path.write_text("spy qqq")
        resolved = AllowlistResolver(self.config(), buckets).resolve(str(path))
        assert resolved.symbols == ["QQQ", "SPY"]

    def test_malformed_location_falls_through(self, buckets):
        buckets("cli").put("list.json", b'["AAPL", "MSFT"')
        buckets("raw").put("allowed/allowedTickers.json", b'["NVDA"]')
        resolved = AllowlistResolver(self.config(), buckets).resolve("s3://cli/list.json")
        assert resolved.symbols == ["NVDA"]

    def test_s3_error_falls_through(self, buckets):
        """A missing bucket at the first location moves on to the next one."""
        client = MagicMock()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchBucket", "Message": "gone"}, "ResponseMetadata": {"HTTPStatusCode": 404}},
            "GetObject",
        )
        typo = S3ObjectStore("typo-bucket", client=client, retry=RetryPolicy(max_attempts=2, sleep=lambda s: None))
        buckets("raw").put("allowed/allowedTickers.json", b'["AAPL"]')

        def factory(bucket):
            return typo if bucket == "typo-bucket" else buckets(bucket)

        resolved = AllowlistResolver(self.config(), factory).resolve("s3://typo-bucket/list.json")
        assert resolved.symbols == ["AAPL"]
        assert resolved.location == "s3://raw/allowed/allowedTickers.json"
        assert client.get_object.call_count == 1

    def test_nothing_resolves(self, buckets, tmp_path):
        with pytest.raises(AllowlistResolutionError) as excinfo:
            AllowlistResolver(self.config(), buckets).resolve(str(tmp_path / "nope.json"))
        assert "s3://raw/allowed/allowedTickers.json" in str(excinfo.value)


class TestDiscovery:
    """Tests for per-date and shard-based discovery."""

    def test_by_date_and_by_ticker(self, raw_store):
        raw_store.put("minute/2024-08-06/AAPL.csv", b"x")
        raw_store.put("minute/2024-08-06/brk.b.csv.gz", b"x")
        raw_store.put("minute/2024-08-07/TSLA.csv", b"x")
        raw_store.put("minute_by_ticker/NVDA/2024/2024-08-06.csv", b"x")
        raw_store.put("minute_by_ticker/MSFT/2024/2024-08-05.csv", b"x")
        symbols = discover_symbols_for_date(raw_store, DAY, concurrency=4)
        assert symbols == ["AAPL", "BRK", "NVDA"]

    def test_max_symbols(self, raw_store):
        for sym in ("A", "B", "C"):
            raw_store.put(f"minute/2024-08-06/{sym}.csv", b"x")
        assert discover_symbols_for_date(raw_store, DAY, max_symbols=2) == ["A", "B"]

    def test_nothing_found(self, raw_store):
        assert discover_symbols_for_date(raw_store, DAY) == []

    def test_shard_symbols(self, out_store, publish_day):
        publish_day(DAY, symbol="MSFT")
        publish_day(DAY, symbol="AAPL")
        publish_day(DAY, symbol="TSLA", session="EXTENDED")
        assert discover_shard_symbols(out_store, "5m", "RTH") == ["AAPL", "MSFT"]
