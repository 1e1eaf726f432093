import asyncio

import httpx
import pytest

from app.core.http_client import ResilientHTTPClient, RetryConfig


def _client(handler, retries=2, rate_limiter=None, **retry_kwargs):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    cfg = RetryConfig(
        retries=retries,
        base_delay=retry_kwargs.pop("base_delay", 0.5),
        max_delay=retry_kwargs.pop("max_delay", 30.0),
        jitter_factor=retry_kwargs.pop("jitter_factor", 0.0),
        **retry_kwargs,
    )
    client = ResilientHTTPClient(
        retry_config=cfg,
        rate_limiter=rate_limiter,
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
    )
    return client, sleeps


class CountingLimiter:
    def __init__(self):
        self.acquired = 0

    async def acquire(self):
        self.acquired += 1


@pytest.mark.asyncio
async def test_request_retries_after_retry_after_header():
    """
    429 with Retry-After: 2 waits exactly 2 seconds, then recovers on retry.
    """
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            return httpx.Response(429, headers={"Retry-After": "2"})
        return httpx.Response(200, json={"ok": True})

    client, sleeps = _client(handler)
    async with client:
        resp = await client.get("https://example.com/test")

    assert resp.status_code == 200
    assert call_count == 2
    assert sleeps == [2.0]
    assert client.metrics["rate_limited"] == 1
    assert client.metrics["retries"] == 1


@pytest.mark.asyncio
async def test_retry_after_longer_than_max_delay_uses_backoff():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "120"})

    client, sleeps = _client(handler, retries=1, base_delay=0.5, max_delay=10.0)
    async with client:
        resp = await client.get("https://example.com/test")

    assert resp.status_code == 429
    assert sleeps == [0.5]


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(404, json={"error": "not found"})

    client, sleeps = _client(handler, retries=4)
    async with client:
        resp = await client.get("https://example.com/missing")

    assert resp.status_code == 404
    assert call_count == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_server_errors_back_off_exponentially_then_return_last_response():
    """
    Budget of 3 retries: 4 attempts, delays 0.5, 1.0, 2.0 (no jitter).
    """
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(503)

    client, sleeps = _client(handler, retries=3)
    async with client:
        resp = await client.get("https://example.com/flaky")

    assert resp.status_code == 503
    assert call_count == 4
    assert sleeps == [0.5, 1.0, 2.0]
    assert client.metrics["server_errors"] == 4


def test_backoff_is_capped_at_max_delay():
    client, _ = _client(lambda r: httpx.Response(200), base_delay=1.0, max_delay=3.0, jitter_factor=0.5)
    for attempt in range(10):
        assert 0.0 <= client._calculate_backoff(attempt) <= 3.0


@pytest.mark.asyncio
async def test_transport_error_retried_then_raised():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        raise httpx.ConnectError("connection reset", request=request)

    client, sleeps = _client(handler, retries=2)
    async with client:
        with pytest.raises(httpx.ConnectError):
            await client.get("https://example.com/down")

    assert call_count == 3
    assert len(sleeps) == 2
    assert client.metrics["transport_errors"] == 3


@pytest.mark.asyncio
async def test_transport_error_then_success():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"ok": True})

    client, _ = _client(handler)
    async with client:
        resp = await client.get("https://example.com/slow")

    assert resp.status_code == 200
    assert call_count == 2


@pytest.mark.asyncio
async def test_hard_timeout_cancels_slow_attempt():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    client, _ = _client(handler, retries=0, timeout=0.05)
    async with client:
        with pytest.raises(asyncio.TimeoutError):
            await client.get("https://example.com/hang")


@pytest.mark.asyncio
async def test_rate_limiter_acquired_before_every_attempt():
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(502 if call_count < 3 else 200)

    limiter = CountingLimiter()
    client, _ = _client(handler, retries=4, rate_limiter=limiter)
    async with client:
        resp = await client.get("https://example.com/limited")

    assert resp.status_code == 200
    assert limiter.acquired == 3
    assert client.metrics["requests"] == 3


def test_retry_after_http_date_parsed():
    client, _ = _client(lambda r: httpx.Response(200))
    resp = httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
    # A date in the past means "retry now"
    assert client._parse_retry_after(resp) == 0.0
    assert client._parse_retry_after(httpx.Response(429, headers={"Retry-After": "soon"})) is None
