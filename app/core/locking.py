import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError

from app.services.exceptions import BackendError

# Default logger for locking; individual services can supply their own
logger = logging.getLogger("app.lock")


class _LocalLockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


# Entries live only while a holder or waiter references them.
_local_locks: dict[str, _LocalLockEntry] = {}
_local_locks_guard = threading.Lock()


def _checkout_local_lock(name: str) -> threading.Lock:
    with _local_locks_guard:
        entry = _local_locks.get(name)
        if entry is None:
            entry = _LocalLockEntry()
            _local_locks[name] = entry
        entry.users += 1
        return entry.lock


def _return_local_lock(name: str) -> None:
    with _local_locks_guard:
        entry = _local_locks.get(name)
        if entry is None:
            return
        entry.users -= 1
        if entry.users <= 0:
            del _local_locks[name]


class DistributedLock:
    """
    Lightweight distributed mutex backed by Redis (NX + EX).
    Falls back to a process-local lock, shared by name, when Redis is unavailable.
    """

    def __init__(
        self,
        name: str,
        *,
        redis_client: Optional[Redis] = None,
        ttl_seconds: int = 10,
        wait_timeout: float = 5,
        retry_interval: float = 0.05,
        log: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.wait_timeout = wait_timeout
        self.retry_interval = retry_interval
        self._owner_token: str | None = None
        self._local_lock: threading.Lock | None = None
        self._logger = log or logger

    def acquire(self) -> bool:
        deadline = time.monotonic() + self.wait_timeout
        token = uuid.uuid4().hex
        contention_logged = False

        if self.redis_client:
            while time.monotonic() < deadline:
                if self.redis_client.set(self.name, token, nx=True, ex=self.ttl_seconds):
                    self._owner_token = token
                    self._logger.debug("lock_acquired", extra={"lock": self.name})
                    return True
                if not contention_logged:
                    self._logger.info("lock_contention", extra={"lock": self.name})
                    contention_logged = True
                time.sleep(self.retry_interval)
            self._logger.warning("lock_acquire_timeout", extra={"lock": self.name})
            return False

        local_lock = _checkout_local_lock(self.name)
        acquired = local_lock.acquire(timeout=self.wait_timeout)
        if acquired:
            self._local_lock = local_lock
            self._owner_token = token
        else:
            _return_local_lock(self.name)
            self._logger.warning("lock_acquire_timeout_local", extra={"lock": self.name})
        return acquired

    def release(self) -> None:
        if self._owner_token is None:
            return
        if self.redis_client:
            try:
                release_script = """
                if redis.call("get", KEYS[1]) == ARGV[1] then
                    return redis.call("del", KEYS[1])
                else
                    return 0
                end
                """
                self.redis_client.eval(release_script, 1, self.name, self._owner_token)
            except RedisError:
                # The key still expires after ttl_seconds.
                self._logger.exception("lock_release_failed", extra={"lock": self.name})
        elif self._local_lock is not None:
            self._local_lock.release()
            self._local_lock = None
            _return_local_lock(self.name)
        self._owner_token = None


class LockFactory:
    """Builds named locks that share one Redis client and one timeout policy."""

    def __init__(
        self,
        *,
        redis_client: Optional[Redis],
        ttl_seconds: int = 10,
        wait_timeout: float = 5,
        retry_interval: float = 0.05,
    ) -> None:
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self.wait_timeout = wait_timeout
        self.retry_interval = retry_interval

    def __call__(self, name: str, *, log: logging.Logger | None = None) -> DistributedLock:
        return DistributedLock(
            name,
            redis_client=self.redis_client,
            ttl_seconds=self.ttl_seconds,
            wait_timeout=self.wait_timeout,
            retry_interval=self.retry_interval,
            log=log,
        )

    @contextmanager
    def exclusive(self, name: str, *, log: logging.Logger | None = None):
        """Hold ``name`` for the block, failing closed with BackendError when it cannot be taken."""

        lock = self(name, log=log)
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            (log or logger).error("lock_backend_error", extra={"lock": name})
            raise BackendError() from exc
        if not acquired:
            raise BackendError()
        try:
            yield lock
        finally:
            lock.release()
