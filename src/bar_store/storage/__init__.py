"""Object store clients, retry policy and key layout."""

from .base import ObjectInfo, ObjectStore
from .memory import InMemoryObjectStore
from .retry import NO_RETRY, RetryPolicy, is_transient_error
from .s3 import S3ObjectStore
from . import paths

__all__ = [
    "ObjectInfo",
    "ObjectStore",
    "InMemoryObjectStore",
    "S3ObjectStore",
    "RetryPolicy",
    "NO_RETRY",
    "is_transient_error",
    "paths",
]
