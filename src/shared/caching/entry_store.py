"""
Persistent key-value layer for cache entries.

``KeyValueStore`` is the contract for the raw persistence collaborator.
Two backends are provided: an in-process store with an optional byte
quota and a Redis store. ``EntryStore`` applies the namespace prefix so
that callers deal only in logical keys.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional, Set

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import ResponseError
import structlog

from ..exceptions import StoreQuotaExceededError, StoreUnavailableError

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Raw persistence collaborator."""

    @abstractmethod
    async def read(self, key: str) -> Optional[bytes]:
        """Return the stored bytes or None when absent."""

    @abstractmethod
    async def write(self, key: str, value: bytes) -> None:
        """
        Store bytes under key.

        Raises:
            StoreQuotaExceededError: No room for the value.
            StoreUnavailableError: Store cannot be reached.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Absent keys are ignored."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> Set[str]:
        """Return every stored key starting with prefix."""

    async def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """In-process store with an optional byte quota."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: 'OrderedDict[str, bytes]' = OrderedDict()
        self.available = True

    @property
    def used_bytes(self) -> int:
        return sum(len(k) + len(v) for k, v in self._data.items())

    def _check_available(self):
        if not self.available:
            raise StoreUnavailableError("In-memory store is unavailable")

    async def read(self, key: str) -> Optional[bytes]:
        self._check_available()
        return self._data.get(key)

    async def write(self, key: str, value: bytes) -> None:
        self._check_available()
        if self.quota_bytes is not None:
            current = self._data.get(key)
            used = self.used_bytes - (len(key) + len(current) if current is not None else 0)
            if used + len(key) + len(value) > self.quota_bytes:
                raise StoreQuotaExceededError(
                    f"Quota of {self.quota_bytes} bytes exceeded writing {key}"
                )
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._check_available()
        self._data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> Set[str]:
        self._check_available()
        return {k for k in self._data if k.startswith(prefix)}


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store."""

    def __init__(self, redis_url: str = "redis://localhost:6379", timeout: int = 5, client: Optional[Redis] = None):
        self.redis_url = redis_url
        self.timeout = timeout
        self.redis_client: Optional[Redis] = client

    async def connect(self) -> None:
        """Connect to Redis."""
        try:
            self.redis_client = redis.from_url(
                self.redis_url,
                socket_timeout=self.timeout,
                decode_responses=False
            )
            await self.redis_client.ping()
            logger.info("Connected to Redis", redis_url=self.redis_url)
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise StoreUnavailableError(f"Redis unavailable: {e}")

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Disconnected from Redis")

    async def _client(self) -> Redis:
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    async def read(self, key: str) -> Optional[bytes]:
        client = await self._client()
        try:
            return await client.get(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis read failed for {key}: {e}")

    async def write(self, key: str, value: bytes) -> None:
        client = await self._client()
        try:
            await client.set(key, value)
        except ResponseError as e:
            if str(e).startswith("OOM"):
                raise StoreQuotaExceededError(f"Redis out of memory writing {key}")
            raise StoreUnavailableError(f"Redis write failed for {key}: {e}")
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis write failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        client = await self._client()
        try:
            await client.delete(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis delete failed for {key}: {e}")

    async def list_keys(self, prefix: str = "") -> Set[str]:
        client = await self._client()
        keys = set()
        try:
            async for key in client.scan_iter(match=f"{prefix}*"):
                keys.add(key.decode('utf-8') if isinstance(key, bytes) else key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"Redis scan failed: {e}")
        return keys


class EntryStore:
    """Namespaced view over a KeyValueStore."""

    def __init__(self, backend: KeyValueStore, prefix: str = "kn_cache_"):
        self.backend = backend
        self.prefix = prefix

    def storage_key(self, key: str) -> str:
        """Map a logical key to its namespaced storage key."""
        return key if key.startswith(self.prefix) else f"{self.prefix}{key}"

    def logical_key(self, storage_key: str) -> str:
        return storage_key[len(self.prefix):]

    async def get(self, key: str) -> Optional[bytes]:
        return await self.backend.read(self.storage_key(key))

    async def set(self, key: str, value: bytes) -> None:
        await self.backend.write(self.storage_key(key), value)

    async def remove(self, key: str) -> None:
        await self.backend.delete(self.storage_key(key))

    async def keys(self) -> Set[str]:
        """Logical keys of every namespaced entry."""
        return {self.logical_key(k) for k in await self.backend.list_keys(self.prefix)}

    async def close(self) -> None:
        await self.backend.close()
