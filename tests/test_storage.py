"""Tests for object stores and the retry policy."""

import io
from datetime import date
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from bar_store.errors import (
    BarStoreError,
    ErrorCode,
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
    StorageError,
)
from bar_store.storage import InMemoryObjectStore, RetryPolicy, S3ObjectStore, is_transient_error, paths


def client_error(code, status, op="PutObject"):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        op,
    )


class TestInMemoryStore:
    """Tests for the in-memory store."""

    def test_put_get_and_generation(self):
        store = InMemoryObjectStore()
        first = store.put("a", b"1")
        second = store.put("a", b"2")
        assert store.get("a") == b"2"
        assert first.generation != second.generation
        assert store.stat("a").generation == second.generation

    def test_if_absent(self):
        store = InMemoryObjectStore()
        store.put("a", b"1", if_absent=True)
        with pytest.raises(ObjectAlreadyExistsError):
            store.put("a", b"2", if_absent=True)
        assert store.get("a") == b"1"

    def test_missing(self):
        store = InMemoryObjectStore()
        with pytest.raises(ObjectNotFoundError):
            store.get("nope")
        assert not store.exists("nope")
        store.delete("nope")
        with pytest.raises(ObjectNotFoundError):
            store.delete("nope", missing_ok=False)

    def test_list_and_prefixes(self):
        store = InMemoryObjectStore()
        for key in ("p/b/1", "p/a/2", "p/a/1", "q/x"):
            store.put(key, b"x")
        assert [o.key for o in store.list("p/")] == ["p/a/1", "p/a/2", "p/b/1"]
        assert store.list_prefixes("p/") == ["p/a/", "p/b/"]

    def test_uri(self):
        assert InMemoryObjectStore("out").uri("k") == "s3://out/k"


class TestClassification:
    """Tests for transient error classification."""

    @pytest.mark.parametrize("code,status", [("SlowDown", 503), ("InternalError", 500), ("Whatever", 502)])
    def test_transient(self, code, status):
        assert is_transient_error(client_error(code, status))

    @pytest.mark.parametrize("code,status", [("AccessDenied", 403), ("NoSuchKey", 404), ("InvalidRequest", 400)])
    def test_fatal(self, code, status):
        assert not is_transient_error(client_error(code, status))

    def test_connection_errors(self):
        assert is_transient_error(EndpointConnectionError(endpoint_url="http://x"))
        assert is_transient_error(ConnectionResetError())
        assert not is_transient_error(ValueError())

    def test_pipeline_errors_use_flag(self):
        assert is_transient_error(BarStoreError("x", retryable=True))
        assert not is_transient_error(BarStoreError("x"))


class TestRetryPolicy:
    """Tests for backoff behaviour."""

    def test_delays_capped(self):
        policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=5.0)
        assert policy.delays() == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_retries_then_succeeds(self):
        slept = []
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise client_error("SlowDown", 503)
            return "ok"

        policy = RetryPolicy(max_attempts=5, base_delay=0.5, sleep=slept.append)
        assert policy.call(flaky) == "ok"
        assert slept == [0.5, 1.0]

    def test_gives_up(self):
        policy = RetryPolicy(max_attempts=3, sleep=lambda s: None)
        fn = MagicMock(side_effect=client_error("SlowDown", 503))
        with pytest.raises(ClientError):
            policy.call(fn)
        assert fn.call_count == 3

    def test_fatal_not_retried(self):
        policy = RetryPolicy(max_attempts=5, sleep=lambda s: None)
        fn = MagicMock(side_effect=client_error("AccessDenied", 403))
        with pytest.raises(ClientError):
            policy.call(fn)
        assert fn.call_count == 1


class TestS3Store:
    """Tests for the boto3-backed store with a fake client."""

    def store(self, client):
        return S3ObjectStore("out", client=client, retry=RetryPolicy(max_attempts=2, sleep=lambda s: None))

    def test_conditional_put(self):
        client = MagicMock()
        client.put_object.return_value = {"ETag": '"abc"'}
        info = self.store(client).put("k", b"data", if_absent=True)
        assert info.generation == "abc"
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["IfNoneMatch"] == "*"
        assert kwargs["Bucket"] == "out"

    def test_precondition_maps_to_exists(self):
        client = MagicMock()
        client.put_object.side_effect = client_error("PreconditionFailed", 412)
        with pytest.raises(ObjectAlreadyExistsError):
            self.store(client).put("k", b"data", if_absent=True)
        assert client.put_object.call_count == 1

    def test_not_found(self):
        client = MagicMock()
        client.head_object.side_effect = client_error("404", 404, op="HeadObject")
        store = self.store(client)
        with pytest.raises(ObjectNotFoundError):
            store.stat("k")
        assert not store.exists("k")

    def test_auth_failure(self):
        client = MagicMock()
        client.get_object.side_effect = client_error("AccessDenied", 403, op="GetObject")
        with pytest.raises(StorageError) as excinfo:
            self.store(client).get("k")
        assert excinfo.value.code is ErrorCode.AUTH_FAILED

    @pytest.mark.parametrize(
        "code,status,expected",
        [
            ("NoSuchBucket", 404, ErrorCode.BAD_REQUEST),
            ("InvalidRequest", 400, ErrorCode.BAD_REQUEST),
            ("SlowDown", 503, ErrorCode.RATE_LIMITED),
            ("RequestTimeout", 400, ErrorCode.TIMEOUT),
            ("InternalError", 500, ErrorCode.TRANSIENT),
        ],
    )
    def test_other_client_errors_wrapped(self, code, status, expected):
        """Every S3 failure surfaces as a StorageError with a code."""
        client = MagicMock()
        client.get_object.side_effect = client_error(code, status, op="GetObject")
        with pytest.raises(StorageError) as excinfo:
            self.store(client).get("k")
        assert excinfo.value.code is expected
        assert isinstance(excinfo.value.__cause__, ClientError)
        assert not excinfo.value.retryable

    def test_read_timeout_wrapped(self):
        client = MagicMock()
        client.head_object.side_effect = ReadTimeoutError(endpoint_url="http://x")
        with pytest.raises(StorageError) as excinfo:
            self.store(client).stat("k")
        assert excinfo.value.code is ErrorCode.TIMEOUT
        assert client.head_object.call_count == 2

    def test_transient_get_retried(self):
        client = MagicMock()
        client.get_object.side_effect = [
            client_error("SlowDown", 503, op="GetObject"),
            {"Body": io.BytesIO(b"payload")},
        ]
        assert self.store(client).get("k") == b"payload"

    def test_version_id_is_generation(self):
        client = MagicMock()
        client.head_object.return_value = {"VersionId": "v7", "ETag": '"e"', "ContentLength": 3}
        info = self.store(client).stat("k")
        assert info.generation == "v7"
        assert info.size == 3

    def test_list_pages(self):
        client = MagicMock()
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "p/b", "ETag": '"1"', "Size": 1}]},
            {"Contents": [{"Key": "p/a", "ETag": '"2"', "Size": 2}]},
            {},
        ]
        assert [o.key for o in self.store(client).list("p/")] == ["p/a", "p/b"]


class TestPaths:
    """Tests for the key layout."""

    def test_layout(self):
        day = date(2024, 3, 5)
        assert paths.daily_shard_path("1h", "EXTENDED", "AAPL", day) == (
            "agg/1h/session=EXTENDED/symbol=AAPL/month=2024-03/day=2024-03-05/part-000.parquet"
        )
        assert paths.monthly_manifest_path("1h", "RTH", "AAPL", 2024, 3) == "manifests/monthly/2024-03/1h/session=RTH/AAPL.json"
        assert paths.yearly_manifest_path("1h", "RTH", "AAPL", 2024) == "manifests/yearly/2024/1h/session=RTH/AAPL.json"
        assert paths.tail_path("5m", "RTH", "AAPL", 300) == "tail/5m/session=RTH/symbol=AAPL/lastN=300.parquet"

    def test_temp_publish_path(self):
        final = "agg-monthly/5m/session=RTH/symbol=AAPL/year=2024/month=03/part-00001.parquet"
        assert paths.temp_publish_path(final, "1a2b") == (
            "agg-monthly/5m/session=RTH/symbol=AAPL/year=2024/month=03/part-00001.tmp-1a2b.parquet"
        )

    def test_parse_back(self):
        assert paths.day_from_path(paths.daily_shard_path("5m", "RTH", "A", date(2024, 3, 5))) == date(2024, 3, 5)
        assert paths.month_from_path(paths.monthly_shard_path("5m", "RTH", "A", 2024, 3)) == (2024, 3)
        assert paths.year_from_path(paths.yearly_shard_path("5m", "RTH", "A", 2024)) == 2024
        assert paths.symbol_from_prefix("agg/5m/session=RTH/symbol=BRK.B/") == "BRK.B"
