# app/services/admission_service.py
import logging
import time
from dataclasses import dataclass
from typing import Callable

import redis

from app.core.config import Settings
from app.core.errors import UpstreamUnavailableError
from app.repositories.counter_store import (
    CounterStore,
    LocalCounterStore,
    RedisCounterStore,
    WindowCount,
    seconds_until,
)

logger = logging.getLogger(__name__)

# After a redis failure, go straight to local counters for this long
SHARED_STORE_RETRY_SECONDS = 5.0


@dataclass(frozen=True)
class RatePolicy:
    name: str
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class Decision:
    """Outcome of one admission check, surfaced as response headers."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at + 0.999)),
        }

    def retry_after(self, now: float) -> int:
        return seconds_until(self.reset_at, now)


class RateAdmissionGate:
    """
    Request-level throttle.

    Counts live in the shared store (redis) so the limit holds across
    server processes. If the shared store errors or times out, the same key
    is counted in the local store instead: admission degrades to
    per-process accuracy instead of failing open or closed. With fallback
    disabled the failure surfaces as UpstreamUnavailableError.

    Window times come from the stores; `clock` only paces the retries of
    an unreachable shared store.

    The gate owns both stores; build one per application at startup.
    """

    def __init__(
        self,
        policies: dict[str, RatePolicy],
        shared: CounterStore | None = None,
        local: LocalCounterStore | None = None,
        fallback_enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.policies = policies
        self.shared = shared
        self.local = local or LocalCounterStore()
        self.fallback_enabled = fallback_enabled
        self.clock = clock
        self._shared_down_until = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateAdmissionGate":
        policies = {
            name: RatePolicy(name, cfg.max_requests, cfg.window_seconds)
            for name, cfg in settings.rate_policies().items()
        }
        shared = None
        if settings.REDIS_URL:
            shared = RedisCounterStore.from_url(
                settings.REDIS_URL,
                timeout=settings.RATE_LIMIT_REDIS_TIMEOUT,
            )
        return cls(
            policies,
            shared=shared,
            fallback_enabled=settings.RATE_LIMIT_FALLBACK_ENABLED,
        )

    def policy(self, name: str) -> RatePolicy:
        try:
            return self.policies[name]
        except KeyError:
            raise KeyError(f"Unknown rate limit policy: {name}") from None

    def admit(self, policy_name: str, identity: str) -> Decision:
        """Apply a named policy to a client identity."""
        policy = self.policy(policy_name)
        key = f"rate_limit:{policy.name}:{identity}"
        return self.check_and_increment(key, policy.max_requests, policy.window_seconds)

    def check_and_increment(self, key: str, max_requests: int, window_seconds: int) -> Decision:
        """
        Count one request against `key`.

        The (max_requests + 1)th request inside a window is denied; the
        first request after the window elapses starts a new one.
        """
        window = self._hit(key, max_requests, window_seconds)
        if not window.allowed:
            logger.warning("Rate limit exceeded for %s (max %d)", key, max_requests)
        return Decision(
            allowed=window.allowed,
            limit=max_requests,
            remaining=window.remaining,
            reset_at=window.reset_at,
        )

    def _hit(self, key: str, max_requests: int, window_seconds: int) -> WindowCount:
        now = self.clock()
        if self.shared is not None and now >= self._shared_down_until:
            try:
                return self.shared.hit(key, max_requests, window_seconds)
            except redis.RedisError as exc:
                self._shared_down_until = now + SHARED_STORE_RETRY_SECONDS
                if not self.fallback_enabled:
                    logger.error("Rate limit store unreachable and fallback disabled: %s", exc)
                    raise UpstreamUnavailableError("Rate limit store is unavailable") from exc
                logger.warning("Rate limit store unreachable, using local counters: %s", exc)
        elif self.shared is not None and not self.fallback_enabled:
            raise UpstreamUnavailableError("Rate limit store is unavailable")
        return self.local.hit(key, max_requests, window_seconds)

    def close(self) -> None:
        if self.shared is not None:
            self.shared.close()
