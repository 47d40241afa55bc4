"""
Unit tests for Redis client wrapper.

Tests Redis operations using fakeredis for isolated testing.
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import fakeredis
import pytest
from redis.exceptions import ConnectionError, ResponseError

from releasekit.services.redis_client import RedisClient, RedisConnectionError


@pytest.fixture
async def fake_redis() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    server = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield server
    await server.flushdb()
    await server.aclose()


@pytest.fixture
async def redis_client(fake_redis) -> RedisClient:
    """Create Redis client with fakeredis for testing."""
    client = RedisClient(redis_url="redis://localhost:6379/0", instance_name="releasekit:")

    # Replace the real Redis client with fakeredis
    client._client = fake_redis
    return client


class TestKeyValueOperations:
    """Test string operations and key prefixing."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, redis_client: RedisClient):
        assert await redis_client.set("abc:raw_pull_requests", '{"results": []}') is True

        assert await redis_client.get("abc:raw_pull_requests") == '{"results": []}'

    @pytest.mark.asyncio
    async def test_instance_prefix_without_separator(self, redis_client: RedisClient, fake_redis):
        await redis_client.set("abc:work_items", "x")

        assert await fake_redis.get("releasekit:abc:work_items") == "x"
        assert await fake_redis.get("abc:work_items") is None

    @pytest.mark.asyncio
    async def test_get_missing_key(self, redis_client: RedisClient):
        assert await redis_client.get("missing") is None

    @pytest.mark.asyncio
    async def test_ttl_applied(self, redis_client: RedisClient, fake_redis):
        await redis_client.set("ttl-key", "v", ttl=120)

        ttl = await fake_redis.ttl("releasekit:ttl-key")
        assert 0 < ttl <= 120

    @pytest.mark.asyncio
    async def test_no_ttl_by_default(self, redis_client: RedisClient, fake_redis):
        await redis_client.set("plain", "v")

        assert await fake_redis.ttl("releasekit:plain") == -1

    @pytest.mark.asyncio
    async def test_exists_and_delete(self, redis_client: RedisClient):
        await redis_client.set("k", "v")
        assert await redis_client.exists("k") is True

        assert await redis_client.delete("k") is True
        assert await redis_client.exists("k") is False
        assert await redis_client.delete("k") is False

    @pytest.mark.asyncio
    async def test_ping(self, redis_client: RedisClient):
        assert await redis_client.ping() is True


class TestErrorHandling:
    """Test retry behaviour and uninitialized use."""

    @pytest.mark.asyncio
    async def test_requires_initialization(self):
        client = RedisClient(redis_url="redis://localhost:6379/0", instance_name="")

        with pytest.raises(RuntimeError):
            await client.get("k")

    @pytest.mark.asyncio
    async def test_transient_errors_retried_then_raised(self):
        client = RedisClient(redis_url="redis://localhost:6379/0", instance_name="", retry_delay=0)
        client._client = AsyncMock()
        client._client.get.side_effect = ConnectionError("connection reset")

        with pytest.raises(RedisConnectionError):
            await client.get("k")

        assert client._client.get.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self):
        client = RedisClient(redis_url="redis://localhost:6379/0", instance_name="", retry_delay=0)
        client._client = AsyncMock()
        client._client.get.side_effect = [ConnectionError("reset"), "value"]

        assert await client.get("k") == "value"

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self):
        client = RedisClient(redis_url="redis://localhost:6379/0", instance_name="", retry_delay=0)
        client._client = AsyncMock()
        client._client.get.side_effect = ResponseError("WRONGTYPE")

        with pytest.raises(ResponseError):
            await client.get("k")

        assert client._client.get.await_count == 1
