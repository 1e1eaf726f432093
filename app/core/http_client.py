"""
Resilient HTTP Client for catalog provider calls

- Hard per-attempt timeout (the in-flight call is cancelled on expiry)
- Exponential backoff with jitter for 429, 5xx and transport errors
- 429 Retry-After respected when it is shorter than max_delay
- Non-429 4xx returned immediately: a client contract violation is not transient
- Shared TokenBucket acquired before EVERY attempt, retries included

After the retry budget is spent the last response is returned (callers decide
whether that fails the run); if the final attempt raised instead, that
transport error is re-raised.
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

import httpx

from app.core.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    retries: int = 4                  # Retries after the first attempt
    base_delay: float = 0.6           # Base delay in seconds
    max_delay: float = 30.0           # Maximum delay cap
    timeout: float = 30.0             # Hard per-attempt timeout
    exponential_base: float = 2.0
    jitter_factor: float = 0.5        # Random jitter (0-1)

    # Status codes that should trigger retry
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


def is_retryable_status(status_code: int, cfg: RetryConfig) -> bool:
    return status_code in cfg.retryable_status_codes or status_code >= 500


class ResilientHTTPClient:
    """
    Async HTTP client with built-in resilience patterns.

    Usage:
        async with ResilientHTTPClient(rate_limiter=bucket) as client:
            response = await client.get("https://api.example.com/data")
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        rate_limiter: Optional[TokenBucket] = None,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.rate_limiter = rate_limiter
        self.default_headers = default_headers or {}
        self._transport = transport
        self._sleep = sleep

        self._client: Optional[httpx.AsyncClient] = None
        self._metrics = {
            "requests": 0,
            "retries": 0,
            "rate_limited": 0,
            "server_errors": 0,
            "transport_errors": 0,
        }

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.retry_config.timeout,
                headers=self.default_headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self

    async def close(self):
        """Close the client. Use this when not using context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def metrics(self) -> Dict[str, Any]:
        return dict(self._metrics)

    def _get_host(self, url: str) -> str:
        return urlparse(url).netloc

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Formula: min(max_delay, base * exp_base^attempt) ± jitter, never above max_delay.
        """
        cfg = self.retry_config
        delay = min(cfg.max_delay, cfg.base_delay * (cfg.exponential_base ** attempt))
        jitter = delay * cfg.jitter_factor * (2 * random.random() - 1)
        return max(0.0, min(delay + jitter, cfg.max_delay))

    def _parse_retry_after(self, response: httpx.Response) -> Optional[float]:
        """Parse Retry-After header into seconds from now."""
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return None

        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass

        try:
            dt = parsedate_to_datetime(retry_after)
            return max(0.0, dt.timestamp() - time.time())
        except (ValueError, TypeError):
            pass

        return None

    def _delay_for_response(self, response: httpx.Response, attempt: int) -> float:
        delay = self._calculate_backoff(attempt)
        if response.status_code == 429:
            retry_after = self._parse_retry_after(response)
            if retry_after is not None and retry_after < self.retry_config.max_delay:
                delay = retry_after
        return delay

    async def _send_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        self._metrics["requests"] += 1
        return await asyncio.wait_for(
            self._client.request(method, url, **kwargs),
            timeout=self.retry_config.timeout,
        )

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make an HTTP request with full resilience.

        Returns:
            httpx.Response - 2xx, non-429 4xx, or the last retryable response
            once the budget is exhausted

        Raises:
            httpx.TransportError / asyncio.TimeoutError when the final attempt
            failed below HTTP
        """
        if not self._client:
            await self.init()

        host = self._get_host(url)
        cfg = self.retry_config
        last_response: Optional[httpx.Response] = None
        last_exception: Optional[BaseException] = None

        for attempt in range(cfg.retries + 1):
            try:
                logger.debug(f"[HTTP] {method} {url} (attempt {attempt + 1}/{cfg.retries + 1})")
                response = await self._send_once(method, url, **kwargs)
            except (httpx.TransportError, asyncio.TimeoutError) as e:
                self._metrics["transport_errors"] += 1
                last_exception = e
                last_response = None
                if attempt < cfg.retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"[HTTP] {host}: {type(e).__name__}, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1})"
                    )
                    self._metrics["retries"] += 1
                    await self._sleep(delay)
                continue

            last_exception = None
            last_response = response

            if not is_retryable_status(response.status_code, cfg):
                if 400 <= response.status_code < 500:
                    logger.error(f"[HTTP] {host}: Status {response.status_code}, not retrying")
                return response

            if response.status_code == 429:
                self._metrics["rate_limited"] += 1
            else:
                self._metrics["server_errors"] += 1

            if attempt < cfg.retries:
                delay = self._delay_for_response(response, attempt)
                logger.warning(
                    f"[HTTP] {host}: Status {response.status_code}, "
                    f"retrying in {delay:.1f}s (attempt {attempt + 1})"
                )
                self._metrics["retries"] += 1
                await self._sleep(delay)

        logger.error(f"[HTTP] {host}: All {cfg.retries + 1} attempts failed")
        if last_exception is not None:
            raise last_exception
        return last_response

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """GET request with resilience."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        """POST request with resilience."""
        return await self.request("POST", url, **kwargs)
