from datetime import datetime, timezone
import threading

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.services import exceptions
from app.services.rate_limiter import InMemoryRateLimiter, RedisRateLimiter


class DummyRedis:
    """Evaluates the limiter script against an in-memory counter."""

    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.calls: list[tuple] = []

    def eval(self, script, numkeys, key, window):
        self.calls.append((numkeys, key, window))
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.counters[key] = self.counters.get(key, 0) + 1
        if self.counters[key] == 1:
            self.ttls[key] = int(window)
        return [self.counters[key], self.ttls[key]]


def test_memory_limiter_allows_up_to_max_count():
    limiter = InMemoryRateLimiter(clock=lambda: 100.0)

    results = [limiter.check_and_increment("otp:a", 3, 60) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.count for r in results] == [1, 2, 3, 4]
    assert results[-1].reset_at == datetime.fromtimestamp(160.0, tz=timezone.utc)


def test_memory_limiter_resets_after_window():
    now = [100.0]
    limiter = InMemoryRateLimiter(clock=lambda: now[0])
    limiter.check_and_increment("otp:a", 1, 60)
    assert limiter.check_and_increment("otp:a", 1, 60).allowed is False

    now[0] = 160.0
    result = limiter.check_and_increment("otp:a", 1, 60)

    assert result.allowed is True
    assert result.count == 1


def test_memory_limiter_keys_are_independent():
    limiter = InMemoryRateLimiter()
    limiter.check_and_increment("otp:a", 1, 60)

    assert limiter.check_and_increment("otp:b", 1, 60).allowed is True


def test_memory_limiter_is_atomic_under_threads():
    limiter = InMemoryRateLimiter()
    barrier = threading.Barrier(8)
    allowed = []

    def worker():
        barrier.wait()
        allowed.append(limiter.check_and_increment("otp:shared", 5, 60).allowed)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert allowed.count(True) == 5


def test_redis_limiter_runs_one_script_per_call():
    client = DummyRedis()
    limiter = RedisRateLimiter(client)

    first = limiter.check_and_increment("otp:+2348012345678", 2, 900)
    second = limiter.check_and_increment("otp:+2348012345678", 2, 900)
    third = limiter.check_and_increment("otp:+2348012345678", 2, 900)

    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert third.count == 3
    assert client.calls[0] == (1, "ratelimit:otp:+2348012345678", 900)
    assert third.reset_at > datetime.now(tz=timezone.utc)


def test_redis_limiter_fails_closed():
    limiter = RedisRateLimiter(DummyRedis(fail=True))

    with pytest.raises(exceptions.BackendError) as exc_info:
        limiter.check_and_increment("otp:a", 1, 60)

    assert exc_info.value.message == "Service temporarily unavailable"
