"""Bar store error types."""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    """Error classification codes."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    TRANSIENT = "transient"
    AUTH_FAILED = "auth_failed"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    BAD_REQUEST = "bad_request"
    HEADER_MISMATCH = "header_mismatch"
    MIXED_SYMBOLS = "mixed_symbols"
    RESOLUTION_FAILED = "resolution_failed"
    RUN_ABORTED = "run_aborted"
    SCHEMA = "schema"


class BarStoreError(Exception):
    """Pipeline exception with error code and retryable flag.

    Attributes:
        message: Human-readable error description.
        code: Structured error code for programmatic handling.
        retryable: Whether the storage retry policy may try the call again.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.TRANSIENT,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class StorageError(BarStoreError):
    """Remote object store failure."""


class ObjectNotFoundError(StorageError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}", code=ErrorCode.NOT_FOUND)
        self.key = key


class ObjectAlreadyExistsError(StorageError):
    """A create-if-absent write found an object already at the key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object already exists: {key}", code=ErrorCode.ALREADY_EXISTS)
        self.key = key


class ShardSchemaError(BarStoreError):
    """Bars handed to the writer break the shard homogeneity rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=ErrorCode.SCHEMA)


class ShardHeaderMismatchError(BarStoreError):
    """First row of a shard does not carry the expected symbol/timeframe/session."""

    def __init__(self, key: str, got: tuple[str, str, str], expected: tuple[str, str, str]) -> None:
        super().__init__(
            f"Header mismatch in {key}: got symbol={got[0]},tf={got[1]},session={got[2]} "
            f"expected symbol={expected[0]},tf={expected[1]},session={expected[2]}",
            code=ErrorCode.HEADER_MISMATCH,
        )
        self.key = key
        self.got = got
        self.expected = expected


class StrictModeViolation(BarStoreError):
    """Error that stops the whole run rather than a single work unit."""


class MixedSymbolError(StrictModeViolation):
    def __init__(self, key: str, found: str, expected: str) -> None:
        super().__init__(
            f"Mixed symbols in {key}: found {found}, expected {expected}",
            code=ErrorCode.MIXED_SYMBOLS,
        )
        self.key = key


class AllowlistResolutionError(BarStoreError):
    """No non-empty symbol universe could be resolved."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=ErrorCode.RESOLUTION_FAILED)


class RunAbortedError(BarStoreError):
    """Raised after a strict-mode violation once in-flight units have finished.

    Attributes:
        summary: The partial run summary collected before the abort.
    """

    def __init__(self, message: str, summary: object) -> None:
        super().__init__(message, code=ErrorCode.RUN_ABORTED)
        self.summary = summary
