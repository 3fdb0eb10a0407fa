"""Fixed-window request rate limiting keyed by client address."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_WINDOW_SECONDS = 15 * 60


class RateLimiter(Protocol):
    limit: int
    window_seconds: int

    def allow(self, key: str) -> bool:
        """Count one request for ``key``; return False once the window's limit is used up."""
        ...


@dataclass
class RateLimitRecord:
    count: int
    window_reset_at: float


class InMemoryRateLimiter:
    """Process-local fixed window table.

    The table is only correct for a single-instance deployment; use
    :class:`RedisRateLimiter` when several instances sit behind a balancer.
    """

    def __init__(
        self,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        clock: Any = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None or now > record.window_reset_at:
                self._records[key] = RateLimitRecord(1, now + self.window_seconds)
                self._sweep(now)
                return True
            if record.count >= self.limit:
                return False
            record.count += 1
            return True

    def _sweep(self, now: float) -> None:
        # Opportunistic cleanup so idle addresses do not accumulate forever.
        if len(self._records) < 10_000:
            return
        stale = [key for key, record in self._records.items() if now > record.window_reset_at]
        for key in stale:
            del self._records[key]


class RedisRateLimiter:
    """Shared fixed window counter (``INCR`` + ``EXPIRE``) in Redis."""

    def __init__(
        self,
        client: Any,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        prefix: str = "ratelimit:",
        fallback: InMemoryRateLimiter | None = None,
    ) -> None:
        self._redis = client
        self.limit = limit
        self.window_seconds = window_seconds
        self._prefix = prefix
        self._fallback = fallback or InMemoryRateLimiter(limit, window_seconds)

    @classmethod
    def from_url(
        cls, url: str, limit: int = DEFAULT_LIMIT, window_seconds: int = DEFAULT_WINDOW_SECONDS
    ) -> RedisRateLimiter:
        return cls(redis.from_url(url), limit, window_seconds)  # type: ignore[no-untyped-call]

    def allow(self, key: str) -> bool:
        redis_key = f"{self._prefix}{key}"
        try:
            pipe = self._redis.pipeline()
            pipe.incr(redis_key)
            # NX keeps the first request's expiry, which makes the window fixed
            pipe.expire(redis_key, int(self.window_seconds), nx=True)
            count, _ = pipe.execute()
        except redis.RedisError as exc:
            logger.warning("Redis rate limiter unavailable, using in-process fallback: %s", exc)
            return self._fallback.allow(key)
        return int(count) <= self.limit
