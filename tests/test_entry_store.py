"""
Unit tests for the Redis backend and the namespaced entry store.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from src.shared.caching.entry_store import EntryStore, InMemoryKeyValueStore, RedisKeyValueStore
from src.shared.exceptions import StoreQuotaExceededError, StoreUnavailableError


@pytest.fixture
def mock_redis():
    """Mock redis.asyncio client."""
    client = AsyncMock()
    client.get.return_value = b'{"payload": 1}'
    return client


@pytest.fixture
def redis_store(mock_redis):
    return RedisKeyValueStore(client=mock_redis)


class TestRedisKeyValueStore:
    """Test error mapping and key scanning."""

    @pytest.mark.asyncio
    async def test_read_write_delete(self, redis_store, mock_redis):
        assert await redis_store.read("kn_cache_a") == b'{"payload": 1}'
        await redis_store.write("kn_cache_a", b"data")
        await redis_store.delete("kn_cache_a")

        mock_redis.set.assert_awaited_once_with("kn_cache_a", b"data")
        mock_redis.delete.assert_awaited_once_with("kn_cache_a")

    @pytest.mark.asyncio
    async def test_out_of_memory_is_quota(self, redis_store, mock_redis):
        mock_redis.set.side_effect = ResponseError("OOM command not allowed when used memory > 'maxmemory'.")

        with pytest.raises(StoreQuotaExceededError):
            await redis_store.write("kn_cache_a", b"data")

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self, redis_store, mock_redis):
        mock_redis.get.side_effect = RedisConnectionError("refused")

        with pytest.raises(StoreUnavailableError):
            await redis_store.read("kn_cache_a")

    @pytest.mark.asyncio
    async def test_list_keys(self, redis_store, mock_redis):
        async def scan_iter(match):
            for key in (b"kn_cache_a", b"kn_cache_b"):
                yield key

        mock_redis.scan_iter = MagicMock(side_effect=scan_iter)

        assert await redis_store.list_keys("kn_cache_") == {"kn_cache_a", "kn_cache_b"}
        mock_redis.scan_iter.assert_called_once_with(match="kn_cache_*")

    @pytest.mark.asyncio
    async def test_close(self, redis_store, mock_redis):
        await redis_store.close()

        mock_redis.aclose.assert_awaited_once()
        assert redis_store.redis_client is None


class TestEntryStore:
    """Test namespacing."""

    def test_storage_key_not_double_prefixed(self):
        store = EntryStore(InMemoryKeyValueStore())

        assert store.storage_key("attendees") == "kn_cache_attendees"
        assert store.storage_key("kn_cache_attendees") == "kn_cache_attendees"

    @pytest.mark.asyncio
    async def test_keys_are_logical(self):
        backend = InMemoryKeyValueStore()
        await backend.write("unrelated", b"x")
        store = EntryStore(backend)
        await store.set("hotels", b"1")

        assert await store.keys() == {"hotels"}
        assert await store.get("hotels") == b"1"

    @pytest.mark.asyncio
    async def test_unavailable_memory_store(self):
        backend = InMemoryKeyValueStore()
        backend.available = False

        with pytest.raises(StoreUnavailableError):
            await EntryStore(backend).set("hotels", b"1")
