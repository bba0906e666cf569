"""Admission rate limiter for new collection requests.

Two moving-window rules per caller key, both enforced by ``limits``:

* one allowed request per ``min_interval_seconds``;
* at most ``max_requests`` allowed requests per ``window_seconds``.

Denied requests are never counted. This gate is independent of the pacing a
running job applies between items.
"""
import math
import threading
import time
from dataclasses import dataclass

import structlog
from limits import RateLimitItemPerSecond
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel
from redis.exceptions import RedisError

from collector_core.util import StoreError

logger = structlog.get_logger()

NAMESPACE = "admission"


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = True
    min_interval_seconds: float = 60.0
    window_seconds: float = 300.0
    max_requests: int = 3
    sweep_interval_seconds: float = 600.0


class RateLimitDecision(BaseModel):
    """Result of a check. retry_after is in whole seconds."""

    allowed: bool
    retry_after: int | None = None
    reason: str | None = None


class RateLimitUnavailable(StoreError):
    """The rate limit backend could not be reached."""


def build_storage(uri: str = "memory://") -> Storage:
    """``memory://`` for a process-local limiter, a redis URL to share it."""
    return storage_from_string(uri)


class AdmissionRateLimiter:
    def __init__(self, config: RateLimitConfig | None = None, storage: Storage | None = None):
        self.config = config or RateLimitConfig()
        self.storage = storage if storage is not None else build_storage()
        self.strategy = MovingWindowRateLimiter(self.storage)
        cfg = self.config
        self.interval_item = RateLimitItemPerSecond(
            1, max(1, math.ceil(cfg.min_interval_seconds)), namespace=NAMESPACE
        )
        self.window_item = RateLimitItemPerSecond(
            max(1, cfg.max_requests), max(1, math.ceil(cfg.window_seconds)), namespace=NAMESPACE
        )
        # key -> time of its last allowed request, as seen by this process
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def _horizon(self) -> float:
        return max(self.config.window_seconds, self.config.min_interval_seconds)

    def _retry_after(self, item, key: str) -> int:
        stats = self.strategy.get_window_stats(item, key)
        return max(1, math.ceil(stats.reset_time - time.time()))

    def _deny(self, key: str, item, event: str, message: str) -> RateLimitDecision:
        retry_after = self._retry_after(item, key)
        logger.warning(event, key=key, retry_after=retry_after)
        return RateLimitDecision(allowed=False, retry_after=retry_after, reason=message.format(retry_after))

    def check(self, key: str) -> RateLimitDecision:
        """Allow or deny a request from key. Only allowed requests are recorded.

        Blocks on the storage backend; async callers should run it in a thread.
        """
        if not self.config.enabled:
            return RateLimitDecision(allowed=True)
        try:
            return self._check(key)
        except (RedisError, OSError) as e:
            logger.error("rate_limit_backend_error", key=key, error=str(e))
            raise RateLimitUnavailable(f"Rate limiter unavailable: {e}") from e

    def _check(self, key: str) -> RateLimitDecision:
        too_soon = "Too many requests. Try again in {} seconds."
        if not self.strategy.test(self.interval_item, key):
            return self._deny(key, self.interval_item, "rate_limit_min_interval", too_soon)
        if not self.strategy.test(self.window_item, key):
            return self._deny(
                key,
                self.window_item,
                "rate_limit_window_exceeded",
                "Request limit reached. Try again in {} seconds.",
            )
        # another caller may have taken the slot since the test
        if not self.strategy.hit(self.interval_item, key):
            return self._deny(key, self.interval_item, "rate_limit_min_interval", too_soon)
        self.strategy.hit(self.window_item, key)
        with self._lock:
            self._seen[key] = time.time()
        return RateLimitDecision(allowed=True)

    def _requests(self, key: str) -> int:
        stats = self.strategy.get_window_stats(self.window_item, key)
        return self.window_item.amount - stats.remaining

    def sweep(self) -> int:
        """Forget keys whose last request is older than the window.

        The backend expires its own entries; this trims the keys tracked for stats.
        """
        before = time.time() - self._horizon()
        with self._lock:
            idle = [k for k, last in self._seen.items() if last < before]
            for k in idle:
                del self._seen[k]
        if idle:
            logger.info("rate_limit_swept", evicted=len(idle))
        return len(idle)

    def stats(self) -> dict:
        """Tracked keys and their requests inside the window, for admins."""
        with self._lock:
            seen = dict(self._seen)
        return {
            "enabled": self.config.enabled,
            "total_keys": len(seen),
            "keys": {
                key: {"requests": self._requests(key), "last_request_at": last}
                for key, last in seen.items()
            },
        }

    def reset(self, key: str | None = None) -> bool:
        """Forget one key, or every key when key is None."""
        if key is None:
            self.storage.reset()
            with self._lock:
                self._seen.clear()
            cleared = True
        else:
            with self._lock:
                cleared = self._seen.pop(key, None) is not None
            cleared = cleared or self._requests(key) > 0
            self.strategy.clear(self.interval_item, key)
            self.strategy.clear(self.window_item, key)
        logger.info("rate_limit_reset", key=key or "*", cleared=cleared)
        return cleared
