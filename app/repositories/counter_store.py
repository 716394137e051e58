# app/repositories/counter_store.py
import math
import threading
from dataclasses import dataclass

import redis
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, RedisStorage, Storage
from limits.strategies import FixedWindowRateLimiter


@dataclass(frozen=True)
class WindowCount:
    """Counter state right after a hit."""

    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds when the window expires


class CounterStore:
    """
    Fixed-window request counters on a `limits` storage backend.

    hit() counts one request against `key` (denied requests are counted
    too) and reports whether it fits within `max_requests` for the
    current window. When the window for `key` has elapsed the counter
    restarts with a fresh window.
    """

    def __init__(self, storage: Storage):
        self.storage = storage
        self.limiter = FixedWindowRateLimiter(storage)

    def hit(self, key: str, max_requests: int, window_seconds: int) -> WindowCount:
        item = RateLimitItemPerSecond(max_requests, window_seconds)
        allowed = self.limiter.hit(item, key)
        reset_at, remaining = self.limiter.get_window_stats(item, key)
        return WindowCount(allowed=allowed, remaining=int(remaining), reset_at=float(reset_at))

    def close(self) -> None:
        pass


class RedisCounterStore(CounterStore):
    """
    Shared counters in redis, correct across server processes.

    redis errors (including socket timeouts) propagate as redis.RedisError;
    the gate decides what to do.
    """

    def __init__(self, url: str, pool: redis.ConnectionPool):
        super().__init__(RedisStorage(url, connection_pool=pool))
        self.pool = pool

    @classmethod
    def from_url(cls, url: str, timeout: float) -> "RedisCounterStore":
        pool = redis.ConnectionPool.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(url, pool)

    def close(self) -> None:
        self.pool.disconnect()


class LocalCounterStore(CounterStore):
    """
    In-process counters.

    Used when redis is not configured or unreachable. Accuracy is per
    process, never more permissive than the configured max per process.
    """

    def __init__(self):
        super().__init__(MemoryStorage())
        self._lock = threading.Lock()

    def hit(self, key: str, max_requests: int, window_seconds: int) -> WindowCount:
        # hit and window stats read as one step
        with self._lock:
            return super().hit(key, max_requests, window_seconds)


def seconds_until(reset_at: float, now: float) -> int:
    """Whole seconds until a window resets (at least 1 while it is open)."""
    return max(1, math.ceil(reset_at - now))
