from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import threading
import time
from typing import Callable, Optional, Protocol

from redis import Redis
from redis.exceptions import RedisError

from .exceptions import BackendError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    count: int
    reset_at: datetime


class RateLimiter(Protocol):
    def check_and_increment(self, key: str, max_count: int, window_seconds: int) -> RateLimitResult: ...


# INCR, start the window on the first hit and report the remaining TTL in one step.
_CHECK_AND_INCREMENT = """
local count = redis.call("INCR", KEYS[1])
if count == 1 then
    redis.call("EXPIRE", KEYS[1], ARGV[1])
end
local ttl = redis.call("TTL", KEYS[1])
if ttl < 0 then
    redis.call("EXPIRE", KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisRateLimiter:
    """Fixed-window counter shared by every worker through Redis."""

    def __init__(self, redis_client: Redis, *, prefix: str = "ratelimit") -> None:
        self.redis_client = redis_client
        self.prefix = prefix

    def check_and_increment(self, key: str, max_count: int, window_seconds: int) -> RateLimitResult:
        redis_key = f"{self.prefix}:{key}"
        try:
            count, ttl = self.redis_client.eval(_CHECK_AND_INCREMENT, 1, redis_key, window_seconds)
        except RedisError as exc:
            logger.error("rate_limiter_backend_error error=%s", type(exc).__name__)
            raise BackendError() from exc
        count = int(count)
        reset_at = datetime.now(tz=timezone.utc) + timedelta(seconds=int(ttl))
        return RateLimitResult(allowed=count <= max_count, count=count, reset_at=reset_at)


class InMemoryRateLimiter:
    """Single-process fallback used when Redis is not configured."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, float]] = {}

    def check_and_increment(self, key: str, max_count: int, window_seconds: int) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            count, expires_at = self._windows.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, expires_at)
            self._prune(now)
        reset_at = datetime.fromtimestamp(expires_at, tz=timezone.utc)
        return RateLimitResult(allowed=count <= max_count, count=count, reset_at=reset_at)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        if len(self._windows) < 1024:
            return
        for stale in [key for key, (_, expires_at) in self._windows.items() if expires_at <= now]:
            del self._windows[stale]
