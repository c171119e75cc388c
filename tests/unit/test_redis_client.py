"""Tests for Redis client wrapper with in-memory fallback."""

import pytest

from core.cache.redis_client import RedisClient, InMemoryBackend


@pytest.fixture
def mem_backend():
    return InMemoryBackend()


class TestInMemoryBackend:
    """Test the in-memory fallback."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, mem_backend):
        await mem_backend.set("key1", "value1")
        result = await mem_backend.get("key1")
        assert result == "value1"

    @pytest.mark.asyncio
    async def test_get_missing_key(self, mem_backend):
        result = await mem_backend.get("nonexistent")
        assert result is None

    @pytest.mark.asyncio
    async def test_delete_many(self, mem_backend):
        await mem_backend.set("key1", "value1")
        await mem_backend.set("key2", "value2")
        deleted = await mem_backend.delete("key1", "key2", "nope")
        assert deleted == 2
        assert await mem_backend.get("key1") is None

    @pytest.mark.asyncio
    async def test_expiry(self, mem_backend):
        # Manually set with a past expiry timestamp
        mem_backend._store["key1"] = ("value1", 0)  # epoch 0 = long past
        result = await mem_backend.get("key1")
        assert result is None
        # Key should be cleaned up
        assert "key1" not in mem_backend._store

    @pytest.mark.asyncio
    async def test_ttl_recorded(self, mem_backend):
        await mem_backend.set("key1", "value1", ex=60)
        assert mem_backend._store["key1"][1] is not None

    @pytest.mark.asyncio
    async def test_close(self, mem_backend):
        await mem_backend.set("key1", "val")
        await mem_backend.close()
        assert await mem_backend.get("key1") is None


class TestRedisClient:
    """Test the RedisClient wrapper."""

    @pytest.mark.asyncio
    async def test_create_without_url_uses_memory(self):
        client = await RedisClient.create(url=None)
        assert client.is_real_redis is False
        await client.set("test", "value")
        assert await client.get("test") == "value"
        assert await client.ping() is True
        await client.close()

    @pytest.mark.asyncio
    async def test_create_with_bad_url_falls_back(self):
        client = await RedisClient.create(url="redis://localhost:59999")
        assert client.is_real_redis is False
        await client.close()

    @pytest.mark.asyncio
    async def test_json_round_trip(self):
        client = RedisClient.in_memory()
        await client.set_json("voucher_book:1", {"id": "1", "pages": [1, 2]}, ex=30)
        assert await client.get_json("voucher_book:1") == {"id": "1", "pages": [1, 2]}
        assert await client.get_json("voucher_book:2") is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_dropped(self):
        client = RedisClient.in_memory()
        await client.set("voucher_book:1", "{not json")
        assert await client.get_json("voucher_book:1") is None
        assert await client.get("voucher_book:1") is None

    @pytest.mark.asyncio
    async def test_delete_without_keys(self):
        client = RedisClient.in_memory()
        assert await client.delete() == 0
