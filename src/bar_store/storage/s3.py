"""S3-compatible object store backed by boto3."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError

from ..errors import ErrorCode, ObjectAlreadyExistsError, ObjectNotFoundError, StorageError
from .base import ObjectInfo, ObjectStore
from .retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

# Silence per-request connection chatter
logging.getLogger("botocore").setLevel(logging.ERROR)

_NOT_FOUND = {"404", "NoSuchKey", "NotFound"}
_PRECONDITION = {"PreconditionFailed", "412"}
_AUTH = {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "ExpiredToken", "403"}
_RATE_LIMITED = {"SlowDown", "Throttling", "ThrottlingException", "429"}
_TIMEOUT = {"RequestTimeout", "408"}


def _client_error_code(e: ClientError) -> ErrorCode:
    code = str(e.response.get("Error", {}).get("Code", ""))
    status = str(e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", ""))
    if code in _RATE_LIMITED or status in _RATE_LIMITED:
        return ErrorCode.RATE_LIMITED
    if code in _TIMEOUT or status in _TIMEOUT:
        return ErrorCode.TIMEOUT
    if status.startswith("5"):
        return ErrorCode.TRANSIENT
    return ErrorCode.BAD_REQUEST


def _generation(meta: dict[str, Any]) -> str:
    version = meta.get("VersionId")
    if version and version != "null":
        return str(version)
    return str(meta.get("ETag", "")).strip('"')


class S3ObjectStore(ObjectStore):
    """Bucket-scoped store with conditional create and retry.

    Create-if-absent uses ``IfNoneMatch="*"``; the generation token is the
    object's VersionId when bucket versioning is on, otherwise its ETag.
    botocore's own retries are disabled so that ``retry`` is the only policy.
    """

    def __init__(
        self,
        bucket: str,
        client: Any = None,
        retry: Optional[RetryPolicy] = None,
        endpoint_url: Optional[str] = None,
    ) -> None:
        self.bucket = bucket
        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                config=Config(max_pool_connections=100, retries={"max_attempts": 1}),
            )
        self.client = client
        self.retry = retry or RetryPolicy()

    def _call(self, label: str, fn):
        return self.retry.call(fn, label=f"{label} s3://{self.bucket}")

    @contextmanager
    def _translated(self, key: str) -> Iterator[None]:
        """Map botocore failures onto the store's exception types.

        Only ``BarStoreError`` subclasses leave this block.
        """
        try:
            yield
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND:
                raise ObjectNotFoundError(key) from e
            if code in _PRECONDITION:
                raise ObjectAlreadyExistsError(key) from e
            if code in _AUTH:
                raise StorageError(
                    f"{code} for s3://{self.bucket}/{key}", code=ErrorCode.AUTH_FAILED
                ) from e
            raise StorageError(
                f"{code or type(e).__name__} for s3://{self.bucket}/{key}", code=_client_error_code(e)
            ) from e
        except (ConnectTimeoutError, ReadTimeoutError) as e:
            raise StorageError(f"Timed out on s3://{self.bucket}/{key}: {e}", code=ErrorCode.TIMEOUT) from e
        except BotoCoreError as e:
            raise StorageError(f"S3 failure on s3://{self.bucket}/{key}: {e}", code=ErrorCode.TRANSIENT) from e

    def stat(self, key: str) -> ObjectInfo:
        with self._translated(key):
            meta = self._call(f"head {key}", lambda: self.client.head_object(Bucket=self.bucket, Key=key))
        return ObjectInfo(key=key, generation=_generation(meta), size=int(meta.get("ContentLength", 0)))

    def get(self, key: str) -> bytes:
        def fetch() -> bytes:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()

        with self._translated(key):
            return self._call(f"get {key}", fetch)

    def put(self, key, data, *, if_absent=False, content_type="application/octet-stream"):
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if if_absent:
            params["IfNoneMatch"] = "*"
        with self._translated(key):
            meta = self._call(f"put {key}", lambda: self.client.put_object(**params))
        return ObjectInfo(key=key, generation=_generation(meta), size=len(data))

    def list(self, prefix: str) -> list[ObjectInfo]:
        def fetch() -> list[ObjectInfo]:
            out = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    out.append(ObjectInfo(key=obj["Key"], generation=_generation(obj), size=int(obj["Size"])))
            return out

        with self._translated(prefix):
            return sorted(self._call(f"list {prefix}", fetch), key=lambda o: o.key)

    def list_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        def fetch() -> list[str]:
            out = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter=delimiter):
                out.extend(p["Prefix"] for p in page.get("CommonPrefixes", []))
            return out

        with self._translated(prefix):
            return sorted(self._call(f"list-prefixes {prefix}", fetch))

    def copy(self, src_key: str, dst_key: str) -> ObjectInfo:
        source = {"Bucket": self.bucket, "Key": src_key}
        with self._translated(src_key):
            self._call(
                f"copy {src_key}",
                lambda: self.client.copy_object(Bucket=self.bucket, Key=dst_key, CopySource=source),
            )
        return self.stat(dst_key)

    def delete(self, key: str, missing_ok: bool = True) -> None:
        if not missing_ok and not self.exists(key):
            raise ObjectNotFoundError(key)
        try:
            with self._translated(key):
                self._call(f"delete {key}", lambda: self.client.delete_object(Bucket=self.bucket, Key=key))
        except ObjectNotFoundError:
            if not missing_ok:
                raise
