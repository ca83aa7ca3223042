import logging

from redis import Redis
from redis.exceptions import RedisError

from .config import Settings

logger = logging.getLogger(__name__)


class RedisManager:
    """Owns the shared Redis client; ``None`` means the in-process fallbacks are used."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.client: Redis | None = None
        self._initialized = False

    def init_client(self) -> None:
        if self._initialized:
            return
        self._initialized = True

        if not self.settings.REDIS_URL:
            logger.info("REDIS_URL not set; using in-process rate limiter and locks.")
            return
        timeout = self.settings.REDIS_TIMEOUT_SECONDS
        try:
            client = Redis.from_url(
                self.settings.REDIS_URL,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
            client.ping()
        except (RedisError, OSError) as exc:
            if self.settings.ENVIRONMENT == "production":
                raise
            logger.warning("Redis unavailable (%s). Falling back to in-process backends.", exc)
            return
        self.client = client
        logger.info("Using Redis for rate limiting and locks.")

    def get_client(self) -> Redis | None:
        if not self._initialized:
            self.init_client()
        return self.client
