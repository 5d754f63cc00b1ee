"""Shared RPC budget: minimum-interval gate plus bounded retry on throttling.

One RateLimiter is built per upstream quota and injected into every client that
spends it. The settlement and resolver jobs run on separate scheduler threads, so
the last-call timestamp is guarded by a lock that is held across the wait.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, TypeVar

import httpx
import requests
from web3.exceptions import BadFunctionCallOutput

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate-limit",
    "ratelimit",
    "too many requests",
    "throttl",
    "request limit exceeded",
    "daily request count exceeded",
    "compute units per second",
)
_RATE_LIMIT_RPC_CODES = {-32005, -32029, 429}


class RateLimited(Exception):
    """Upstream kept throttling after the retry budget was spent."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


def _status_code(exc: Exception) -> int | None:
    response = getattr(exc, "response", None)
    return getattr(response, "status_code", None)


def is_rate_limit_error(exc: Exception) -> bool:
    """Classify an upstream error as throttling (retryable) or not."""
    if isinstance(exc, (requests.HTTPError, httpx.HTTPStatusError)):
        return _status_code(exc) == 429

    # Providers under load answer eth_call with empty data
    if isinstance(exc, BadFunctionCallOutput):
        return True

    if isinstance(exc, (requests.ConnectionError, requests.Timeout, httpx.TransportError)):
        return False

    for arg in exc.args:
        if isinstance(arg, dict) and arg.get("code") in _RATE_LIMIT_RPC_CODES:
            return True

    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


class RateLimiter:
    """Minimum-interval gate with bounded linear backoff on rate-limit errors."""

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        max_retries: int = 3,
        base_delay_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        classify: Callable[[Exception], bool] = is_rate_limit_error,
    ):
        self.min_interval_seconds = min_interval_seconds
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self._clock = clock
        self._sleep = sleep
        self._classify = classify
        self._lock = threading.Lock()
        self._last_call: float | None = None
        self.call_times: list[float] = []

    def acquire(self) -> float:
        """Block until the minimum interval since the last call has elapsed.

        Returns the number of seconds waited.
        """
        with self._lock:
            waited = 0.0
            if self._last_call is not None:
                remaining = self.min_interval_seconds - (self._clock() - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
            self._last_call = self._clock()
            self.call_times.append(self._last_call)
            if len(self.call_times) > 1000:
                del self.call_times[:500]
            return waited

    def execute(self, label: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run fn under the gate, retrying only rate-limit-class failures."""
        attempt = 0
        while True:
            self.acquire()
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if not self._classify(exc):
                    raise
                attempt += 1
                if attempt > self.max_retries:
                    raise RateLimited(
                        f"{label}: still rate limited after {self.max_retries} retries: {exc}",
                        attempts=attempt,
                    ) from exc
                delay = self.base_delay_seconds * attempt
                logger.warning(
                    f"{label}: rate limited, retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)
