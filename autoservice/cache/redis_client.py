"""
Redis client configuration with connection pooling and async support.

This module provides the async Redis client used for expiring lookups (the
staff directory index and per-identity results), with connection pooling,
retry logic, health checks and namespaced cache keys. Values are stored as
JSON with a per-key expiry.
"""

import json
from typing import Any, Optional, Union

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    ConnectionError,
    RedisError,
    TimeoutError,
)

from autoservice.core.config import get_settings
from autoservice.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client with connection pooling and retry logic.

    Every operation raises ``ConnectionError`` while the client is not
    connected, so callers can treat an unreachable cache like any other
    Redis failure.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        retry_on_timeout: bool = True,
        health_check_interval: int = 30,
    ):
        """
        Initialize Redis client with connection pool settings.

        Args:
            url: Redis connection URL (defaults to settings.redis_url)
            max_connections: Maximum pool connections (defaults to settings)
            socket_timeout: Socket operation timeout in seconds
            socket_connect_timeout: Socket connection timeout in seconds
            retry_on_timeout: Enable automatic retry on timeout
            health_check_interval: Health check interval in seconds
        """
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._retry_on_timeout = retry_on_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Redis URL with the password masked, safe for logging."""
        if "@" in url:
            protocol, rest = url.split("://", 1)
            if "@" in rest:
                _, host_part = rest.split("@", 1)
                return f"{protocol}://***@{host_part}"
        return url

    async def connect(self) -> None:
        """
        Establish Redis connection with retry logic.

        Creates connection pool and verifies connectivity with ping.

        Raises:
            ConnectionError: If connection cannot be established
        """
        if self._is_connected:
            logger.warning("Redis client already connected")
            return

        try:
            retry = Retry(
                ExponentialBackoff(base=0.1, cap=2.0),
                retries=3,
            )

            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                retry_on_timeout=self._retry_on_timeout,
                health_check_interval=self._health_check_interval,
                retry=retry,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connection established",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
            )

        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self._release()
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def _release(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.aclose()
            self._pool = None
        self._is_connected = False

    async def disconnect(self) -> None:
        """Close the connection pool and release its resources."""
        if not self._is_connected:
            return
        await self._release()
        logger.info("Redis connection closed")

    async def health_check(self) -> bool:
        """
        Perform Redis health check.

        Returns:
            True if Redis is connected and answers a ping, False otherwise
        """
        if not self._is_connected or not self._client:
            logger.warning("Redis health check failed: not connected")
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.error(
                "Redis health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _ensure_connected(self) -> None:
        if not self._is_connected or not self._client:
            raise ConnectionError("Redis client is not connected")

    async def get(self, key: str) -> Optional[str]:
        """
        Get value from Redis by key.

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        self._ensure_connected()

        try:
            value = await self._client.get(key)
            logger.debug("Redis GET operation", key=key, found=value is not None)
            return value
        except RedisError as e:
            logger.error("Redis GET operation failed", key=key, error=str(e))
            raise

    async def set(
        self,
        key: str,
        value: Union[str, bytes, int, float],
        ex: Optional[int] = None,
    ) -> bool:
        """
        Set value in Redis with optional expiration.

        Args:
            key: Cache key
            value: Value to cache
            ex: Expiration time in seconds

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        self._ensure_connected()

        try:
            result = await self._client.set(key, value, ex=ex)
            logger.debug("Redis SET operation", key=key, ex=ex, success=bool(result))
            return bool(result)
        except RedisError as e:
            logger.error("Redis SET operation failed", key=key, error=str(e))
            raise

    async def delete(self, *keys: str) -> int:
        """Delete keys; returns the number removed."""
        self._ensure_connected()

        try:
            count = await self._client.delete(*keys)
            logger.debug("Redis DELETE operation", keys=keys, count=count)
            return count
        except RedisError as e:
            logger.error("Redis DELETE operation failed", keys=keys, error=str(e))
            raise

    async def get_json(self, key: str) -> Optional[dict[str, Any]]:
        """
        Get JSON value from Redis by key.

        Returns:
            Deserialized JSON value or None if key doesn't exist

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
            json.JSONDecodeError: If value is not valid JSON
        """
        value = await self.get(key)
        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error("Failed to decode JSON from cache", key=key, error=str(e))
            raise

    async def set_json(
        self,
        key: str,
        value: dict[str, Any],
        ex: Optional[int] = None,
    ) -> bool:
        """
        Set JSON value in Redis with optional expiration.

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
            TypeError: If value is not JSON serializable
        """
        try:
            json_value = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize value to JSON", key=key, error=str(e))
            raise
        return await self.set(key, json_value, ex=ex)

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Redis key pattern (e.g., "autoservice:directory:*")

        Returns:
            Number of keys deleted
        """
        self._ensure_connected()

        try:
            keys = [key async for key in self._client.scan_iter(match=pattern)]
            if not keys:
                logger.debug("Redis DELETE pattern - no keys found", pattern=pattern)
                return 0

            count = await self.delete(*keys)
            logger.debug("Redis DELETE pattern", pattern=pattern, count=count)
            return count
        except RedisError as e:
            logger.error("Redis DELETE pattern failed", pattern=pattern, error=str(e))
            raise


class CacheKeyManager:
    """
    Builds namespaced cache keys.

    Example:
        >>> CacheKeyManager("app").make_key("directory", "identity", "jane")
        'app:directory:identity:jane'
    """

    def __init__(self, namespace: str = "autoservice"):
        self.namespace = namespace

    def make_key(self, *parts: Union[str, int]) -> str:
        """Join the non-empty parts under the namespace with ":"."""
        key_parts = [str(part) for part in parts if part]
        return ":".join([self.namespace] + key_parts)

    def directory_index_key(self) -> str:
        return self.make_key("directory", "index")

    def directory_identity_key(self, identity: str) -> str:
        return self.make_key("directory", "identity", identity)

    def directory_pattern(self, *parts: str) -> str:
        """Pattern matching every directory key under ``parts``."""
        return self.make_key("directory", *parts, "*")


_redis_client: Optional[RedisClient] = None
_cache_key_manager: Optional[CacheKeyManager] = None


async def get_redis_client() -> RedisClient:
    """
    Get or create the global Redis client.

    The client is kept even when the first connection fails; its operations
    then raise ``ConnectionError`` until the process restarts.

    Raises:
        ConnectionError: If the first connection attempt fails
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = RedisClient()
        await _redis_client.connect()

    return _redis_client


def get_cache_key_manager() -> CacheKeyManager:
    """Get or create the global cache key manager."""
    global _cache_key_manager

    if _cache_key_manager is None:
        _cache_key_manager = CacheKeyManager()

    return _cache_key_manager


async def close_redis_client() -> None:
    """Close and forget the global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
