"""Per-client token bucket rate limiting.

Each client key gets its own bucket, created the first time the key is
seen and kept for the life of the process.
"""

import logging
import threading
import time
from typing import Callable, Mapping, Optional

logger = logging.getLogger(__name__)

FORWARDED_FOR_HEADER = "x-forwarded-for"


class TokenBucket:
    """Token bucket that starts full.

    Tokens refill continuously at ``rate`` per second up to ``burst``.
    ``allow`` is safe to call from several threads at once.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def allow(self) -> bool:
        """Consume one token if available."""
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    @property
    def tokens(self) -> float:
        with self._lock:
            return self._tokens


class RateLimiterRegistry:
    """Process-wide mapping of client key to token bucket.

    The registry lock only covers lookup-or-create; consuming a token is
    guarded by the bucket's own lock.
    """

    def __init__(
        self,
        rate: float = 1.0,
        burst: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def get_bucket(self, client_key: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(client_key)
            if bucket is None:
                bucket = TokenBucket(self.rate, self.burst, clock=self._clock)
                self._buckets[client_key] = bucket
                logger.info("Created new rate limiter", extra={"client_key": client_key})
            return bucket

    def allow(self, client_key: str) -> bool:
        return self.get_bucket(client_key).allow()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


def client_key_from_request(
    headers: Mapping[str, str],
    client_host: Optional[str],
) -> str:
    """Identify the caller for rate limiting.

    Uses the first entry of ``X-Forwarded-For`` when present, otherwise the
    connection's peer address.
    """
    forwarded = headers.get(FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return client_host or "unknown"
