"""
Redis client with connection pooling and graceful fallback.

Provides:
- Async connection pool shared by the job queue, queue events and detail cache
- Circuit breaker pattern to prevent cascade failures
- Graceful degradation when Redis unavailable

One RedisClient is built per process by the service container and handed to
the components that need it.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError

from config import (
    REDIS_HEALTH_CHECK_INTERVAL,
    REDIS_POOL_SIZE,
    REDIS_SOCKET_CONNECT_TIMEOUT,
    REDIS_SOCKET_TIMEOUT,
)

logger = logging.getLogger(__name__)

CIRCUIT_FAILURE_THRESHOLD = 3


class RedisClient:
    """Redis client with connection pooling and health monitoring."""

    def __init__(self, url: str) -> None:
        self._url = url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._healthy: bool = False
        self._last_health_check: Optional[datetime] = None
        self._consecutive_failures: int = 0
        self._circuit_open: bool = False
        self._circuit_open_until: Optional[datetime] = None

    @classmethod
    async def connect(cls, url: str) -> "RedisClient":
        """Create a client and try to open the pool. Never raises on connection failure."""
        client = cls(url)
        await client._initialize()
        return client

    async def _initialize(self) -> None:
        if not self._url:
            logger.info("Redis URL not configured, Redis features disabled")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=REDIS_POOL_SIZE,
                socket_timeout=REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=REDIS_SOCKET_CONNECT_TIMEOUT,
                retry_on_error=[RedisConnectionError],
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._healthy = True
            self._last_health_check = datetime.now(timezone.utc)
            logger.info(f"Redis connection established: {self._url.split('@')[-1]}")
        except Exception as e:
            logger.warning(f"Redis connection failed during initialization: {e}")
            self._healthy = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_configured(self) -> bool:
        return bool(self._url)

    @property
    def is_available(self) -> bool:
        """Check if Redis is currently available (respects circuit breaker)."""
        if not self._url or self._client is None:
            return False

        if self._circuit_open:
            now = datetime.now(timezone.utc)
            if self._circuit_open_until and now < self._circuit_open_until:
                return False
            self._circuit_open = False
            logger.info("Redis circuit breaker closing, attempting reconnection")
            return True

        return self._healthy

    def get_client(self) -> Optional[Redis]:
        """Get the Redis client, returns None if unavailable."""
        if not self.is_available:
            return None
        return self._client

    def record_failure(self) -> None:
        """Record a failure and potentially open circuit breaker."""
        self._consecutive_failures += 1
        self._healthy = False

        if self._consecutive_failures >= CIRCUIT_FAILURE_THRESHOLD:
            self._circuit_open = True
            # Exponential backoff: 30s, 60s, 120s, 240s, max 300s
            backoff = min(300, 30 * (2 ** (self._consecutive_failures - CIRCUIT_FAILURE_THRESHOLD)))
            self._circuit_open_until = datetime.now(timezone.utc) + timedelta(seconds=backoff)
            logger.warning(
                f"Redis circuit breaker opened for {backoff}s (consecutive failures: {self._consecutive_failures})"
            )

    def record_success(self) -> None:
        if self._consecutive_failures > 0:
            logger.info(f"Redis connection recovered after {self._consecutive_failures} failures")
        self._consecutive_failures = 0
        self._healthy = True
        self._circuit_open = False
        self._circuit_open_until = None

    async def health_check(self) -> bool:
        """
        Perform health check on Redis connection.

        Returns:
            True if healthy, False otherwise
        """
        if not self._client:
            return False

        if self._last_health_check:
            elapsed = (datetime.now(timezone.utc) - self._last_health_check).total_seconds()
            if elapsed < REDIS_HEALTH_CHECK_INTERVAL:
                return self._healthy

        try:
            await self._client.ping()
            self.record_success()
            self._last_health_check = datetime.now(timezone.utc)
            return True
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            self.record_failure()
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.debug(f"Exception while closing Redis client: {e}")
        if self._pool:
            try:
                await self._pool.disconnect()
            except Exception as e:
                logger.debug(f"Exception while disconnecting Redis pool: {e}")
        self._client = None
        self._pool = None
        self._healthy = False
