"""
Redis client wrapper used as the pipeline's cache store.

Provides plain string operations (set/get/delete/exists) on keys namespaced
by an instance prefix, with connection pooling and retry logic for
transient connection errors.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from releasekit.utils.resilience import backoff_delay, retry_with_backoff


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisConnectionError(Exception):
    """Raised when Redis stays unreachable after retries."""
    pass


class RedisClient:
    """
    Redis client wrapper with connection pooling and retry logic.

    Keys are namespaced by `instance_name`, concatenated directly with the
    logical key (no separator is inserted).
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        instance_name: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5
    ):
        """
        Args:
            redis_url: Redis connection URL. If None, taken from settings.
            instance_name: Key prefix. If None, taken from settings.
            max_retries: Attempts per command on connection errors
            retry_delay: Base delay between attempts (exponential backoff)
            connection_timeout: Socket and connect timeout in seconds
        """
        self._redis_url = redis_url
        self._instance_name = instance_name
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout

    @property
    def instance_name(self) -> str:
        return self._instance_name or ""

    @retry_with_backoff(max_retries=5, base_delay=2.0, exceptions=(RedisConnectionError,))
    async def initialize(self) -> None:
        """
        Open the connection pool and verify it with PING.

        Raises:
            RedisConnectionError: If Redis is unreachable after retries
        """
        if not self._redis_url or self._instance_name is None:
            from releasekit.config import settings
            self._redis_url = self._redis_url or settings.redis_url
            if self._instance_name is None:
                self._instance_name = settings.redis_instance_name

        try:
            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=10,
                decode_responses=True,
                socket_timeout=self._connection_timeout,
                socket_connect_timeout=self._connection_timeout
            )
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()
        except RedisError as e:
            logger.error(f"Could not reach Redis at {self._redis_url}: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}") from e

        logger.info(f"Redis cache ready (key prefix '{self.instance_name}')")

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self._client:
            await self._client.aclose()
        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    def _full_key(self, key: str) -> str:
        return f"{self.instance_name}{key}"

    async def _execute(self, command: str, operation: Callable[[redis.Redis], Awaitable[T]]) -> T:
        """
        Run one command, retrying connection errors with backoff.

        Raises:
            RuntimeError: If initialize() has not been called
            RedisConnectionError: If connection errors persist
            RedisError: On other Redis errors (not retried)
        """
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")

        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries):
            try:
                return await operation(self._client)
            except (ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt + 1 < self._max_retries:
                    delay = backoff_delay(attempt, self._retry_delay)
                    logger.warning(
                        f"Redis {command} failed (attempt {attempt + 1}/{self._max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
            except RedisError as e:
                logger.error(f"Redis {command} failed: {e}")
                raise

        logger.error(f"Redis {command} failed after {self._max_retries} attempts: {last_error}")
        raise RedisConnectionError(f"Redis {command} failed after {self._max_retries} attempts: {last_error}")

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Store `value` under `key`, expiring after `ttl` seconds if given."""
        full_key = self._full_key(key)
        result: Any = await self._execute("SET", lambda client: client.set(full_key, value, ex=ttl))
        logger.debug(f"Redis SET {full_key} ({len(value)} chars, ttl={ttl}): {result}")
        return bool(result)

    async def get(self, key: str) -> Optional[str]:
        full_key = self._full_key(key)
        value = await self._execute("GET", lambda client: client.get(full_key))
        logger.debug(f"Redis GET {full_key}: {'hit' if value is not None else 'miss'}")
        return value

    async def delete(self, key: str) -> bool:
        """Returns True if something was removed."""
        removed = await self._execute("DEL", lambda client: client.delete(self._full_key(key)))
        return removed > 0

    async def exists(self, key: str) -> bool:
        count = await self._execute("EXISTS", lambda client: client.exists(self._full_key(key)))
        return count > 0

    async def ping(self) -> bool:
        return bool(await self._execute("PING", lambda client: client.ping()))
