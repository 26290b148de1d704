"""Retry policy applied at the object store boundary.

Transient failures (throttling, 5xx, dropped connections, timeouts) are
retried with exponential backoff. Anything else, including auth failures and
malformed requests, propagates on the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..errors import BarStoreError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS = {429, 500, 502, 503, 504}
TRANSIENT_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
    "ConditionalRequestConflict",
}


def is_transient_error(exc: BaseException) -> bool:
    """Classify an exception raised by a storage call."""
    if isinstance(exc, BarStoreError):
        return exc.retryable
    if isinstance(exc, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError, ConnectTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if error.get("Code") in TRANSIENT_CODES:
            return True
        try:
            return int(status) in TRANSIENT_STATUS
        except (TypeError, ValueError):
            return False
    return isinstance(exc, (ConnectionError, TimeoutError))


@dataclass
class RetryPolicy:
    """Exponential backoff retry.

    Attributes:
        max_attempts: Total attempts including the first call.
        base_delay: Delay in seconds after the first failure.
        max_delay: Upper bound for a single delay.
        multiplier: Growth factor between consecutive delays.
        jitter: Randomise each delay in ``[0.5, 1.0] * delay``.
        is_retryable: Classification function deciding retryable vs fatal.
        sleep: Injected for tests.
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: bool = False
    is_retryable: Callable[[BaseException], bool] = is_transient_error
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delays(self) -> list[float]:
        """Backoff delays between attempts (``max_attempts - 1`` values)."""
        out = []
        delay = self.base_delay
        for _ in range(max(0, self.max_attempts - 1)):
            out.append(min(delay, self.max_delay))
            delay *= self.multiplier
        return out

    def call(self, fn: Callable[[], T], label: Optional[str] = None) -> T:
        """Run ``fn`` until it succeeds, fails fatally, or attempts run out."""
        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except Exception as e:
                if attempt >= self.max_attempts or not self.is_retryable(e):
                    raise
                delay = delays[attempt - 1]
                if self.jitter:
                    delay *= random.uniform(0.5, 1.0)
                LOGGER.warning(
                    "%s retry %d/%d after %s: %s",
                    label or "storage call", attempt, self.max_attempts - 1, type(e).__name__, e,
                )
                self.sleep(delay)


NO_RETRY = RetryPolicy(max_attempts=1)
