"""Unit tests for the shared RPC rate limiter."""

import threading
import time

import httpx
import pytest
import requests
from web3.exceptions import BadFunctionCallOutput

from kokitzu.services.rate_limit import RateLimited, RateLimiter, is_rate_limit_error


def _http_error(status: int) -> requests.HTTPError:
    response = requests.Response()
    response.status_code = status
    return requests.HTTPError(f"{status} error", response=response)


def test_classifies_throttling_errors() -> None:
    assert is_rate_limit_error(_http_error(429))
    assert is_rate_limit_error(ValueError({"code": -32005, "message": "limit exceeded"}))
    assert is_rate_limit_error(RuntimeError("Too Many Requests"))
    assert is_rate_limit_error(BadFunctionCallOutput("Could not decode contract function call"))

    request = httpx.Request("GET", "https://api.example.com/simple/price")
    response = httpx.Response(429, request=request)
    assert is_rate_limit_error(httpx.HTTPStatusError("429", request=request, response=response))


def test_does_not_retry_other_errors() -> None:
    assert not is_rate_limit_error(_http_error(500))
    assert not is_rate_limit_error(requests.ConnectionError("connection refused"))
    assert not is_rate_limit_error(ValueError("execution reverted: Option already executed"))


def test_provider_limits_that_are_not_throttling() -> None:
    assert not is_rate_limit_error(
        ValueError("Log response size exceeded. You can make eth_getLogs requests with up to a 2K block range")
    )
    assert not is_rate_limit_error(ValueError("query exceeded max block range 10000"))
    assert not is_rate_limit_error(ValueError("out of gas: gas required exceeds allowance"))
    assert is_rate_limit_error(
        ValueError("Your app has exceeded its compute units per second capacity")
    )


def test_burst_calls_are_spaced_by_min_interval(clock) -> None:
    limiter = RateLimiter(min_interval_seconds=1.0, clock=clock, sleep=clock.sleep)

    for _ in range(5):
        limiter.execute("call", lambda: "ok")

    gaps = [b - a for a, b in zip(limiter.call_times, limiter.call_times[1:])]
    assert len(gaps) == 4
    assert all(gap >= 1.0 for gap in gaps)


def test_no_wait_after_idle_period(clock) -> None:
    limiter = RateLimiter(min_interval_seconds=1.0, clock=clock, sleep=clock.sleep)

    limiter.acquire()
    clock.now += 5
    assert limiter.acquire() == 0.0


def test_retries_rate_limit_then_succeeds(clock) -> None:
    limiter = RateLimiter(
        min_interval_seconds=0.0, max_retries=3, base_delay_seconds=2.0,
        clock=clock, sleep=clock.sleep,
    )
    calls = {"n": 0}

    def flaky() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise _http_error(429)
        return "ok"

    assert limiter.execute("flaky", flaky) == "ok"
    assert calls["n"] == 3
    # Linear backoff: base * attempt
    assert clock.sleeps == [2.0, 4.0]


def test_exhausted_retries_raise_rate_limited(clock) -> None:
    limiter = RateLimiter(
        min_interval_seconds=0.0, max_retries=3, base_delay_seconds=1.0,
        clock=clock, sleep=clock.sleep,
    )
    calls = {"n": 0}

    def throttled() -> None:
        calls["n"] += 1
        raise _http_error(429)

    with pytest.raises(RateLimited) as exc_info:
        limiter.execute("throttled", throttled)

    # One initial attempt plus max_retries retries
    assert calls["n"] == 4
    assert exc_info.value.attempts == 4


def test_non_rate_limit_error_propagates_immediately(clock) -> None:
    limiter = RateLimiter(min_interval_seconds=0.0, clock=clock, sleep=clock.sleep)
    calls = {"n": 0}

    def broken() -> None:
        calls["n"] += 1
        raise KeyError("boom")

    with pytest.raises(KeyError):
        limiter.execute("broken", broken)
    assert calls["n"] == 1


def test_threads_share_one_spacing() -> None:
    limiter = RateLimiter(min_interval_seconds=0.05)

    def worker() -> None:
        for _ in range(3):
            limiter.execute("worker", lambda: None)

    threads = [threading.Thread(target=worker) for _ in range(3)]
    start = time.monotonic()
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    times = sorted(limiter.call_times)
    assert len(times) == 9
    gaps = [b - a for a, b in zip(times, times[1:])]
    assert min(gaps) >= 0.05 - 1e-3
    assert time.monotonic() - start >= 8 * 0.05 - 1e-2
