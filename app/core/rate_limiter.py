"""
Provider Rate Limiter - token bucket for outbound catalog API calls

One TokenBucket is built at process start and handed to every
ResilientHTTPClient that talks to the provider. There is no module-level
singleton; the job entrypoint owns the instance.

Behaviour:
- Capacity C tokens, refilled lazily at r tokens/second on every check
- try_acquire() never blocks; it returns False when < 1 token is available
- acquire() is the backing-off caller: it sleeps until a token should exist
- No cross-process coordination - each replica has its own bucket
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Any

logger = logging.getLogger(__name__)


@dataclass
class TokenBucketConfig:
    """Configuration for the outbound token bucket."""
    capacity: int = 10                 # Max burst
    refill_per_second: float = 5.0     # Sustained requests per second


class TokenBucket:
    """
    Process-wide token bucket.

    Safe for concurrent callers: the refill-and-take step runs under a
    threading lock so it behaves the same from coroutines and worker threads.
    """

    def __init__(
        self,
        config: TokenBucketConfig = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or TokenBucketConfig()
        if self._config.capacity < 1:
            raise ValueError("capacity must be at least 1")
        if self._config.refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")

        self._clock = clock
        self._tokens = float(self._config.capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

        self._metrics = {
            "acquired": 0,
            "rejected": 0,
            "waits": 0,
            "wait_seconds": 0.0,
        }

    @property
    def capacity(self) -> int:
        return self._config.capacity

    @property
    def refill_per_second(self) -> float:
        return self._config.refill_per_second

    def _refill(self) -> None:
        """Lazy refill: tokens = min(C, tokens + elapsed * r). Caller holds lock."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(
            float(self._config.capacity),
            self._tokens + elapsed * self._config.refill_per_second,
        )
        self._last_refill = now

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def try_acquire(self) -> bool:
        """Take one token if available. Never blocks."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                self._metrics["acquired"] += 1
                return True
            self._metrics["rejected"] += 1
            return False

    def seconds_until_available(self) -> float:
        """Time until one whole token will have accumulated."""
        with self._lock:
            self._refill()
            missing = 1.0 - self._tokens
            if missing <= 0:
                return 0.0
            return missing / self._config.refill_per_second

    async def acquire(self) -> None:
        """Back off until a token is granted."""
        while not self.try_acquire():
            wait_time = self.seconds_until_available()
            with self._lock:
                self._metrics["waits"] += 1
                self._metrics["wait_seconds"] += wait_time
            logger.debug(f"[RATE_LIMIT] Bucket empty, waiting {wait_time:.3f}s")
            await asyncio.sleep(wait_time)

    @property
    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            counters = dict(self._metrics)
        return {
            **counters,
            "capacity": self._config.capacity,
            "refill_per_second": self._config.refill_per_second,
        }
