"""
Unified cache over the namespaced entry store.

Every read decodes and validates the stored entry; anything expired,
version-mismatched or corrupt is evicted and reported as absent, so
callers only ever see valid payloads.

Writes are last-writer-wins with no concurrency token. This assumes a
single writer per key. Under asyncio no lock is needed because a logical
operation is never preempted; callers running on OS threads must add
per-key mutual exclusion themselves.
"""

import time
from typing import Any, Dict, Optional, Tuple

import structlog

from ..cache_monitor import CacheMonitor, safe_emit
from ..exceptions import CorruptionError, StoreError, StoreQuotaExceededError, WriteError
from .codec import CacheEntryCodec
from .entry_store import EntryStore

logger = structlog.get_logger(__name__)


class UnifiedCache:
    """Validated cache-entry access for every component."""

    def __init__(
        self,
        store: EntryStore,
        codec: Optional[CacheEntryCodec] = None,
        monitor: Optional[CacheMonitor] = None,
        consistency_keys: Tuple[str, str] = ("agenda_items", "attendees")
    ):
        self.store = store
        self.codec = codec or CacheEntryCodec()
        self.monitor = monitor or CacheMonitor()
        self.consistency_keys = consistency_keys
        self.corruption_count = 0

        self.stats = {
            'hits': 0,
            'misses': 0,
            'corruptions': 0,
            'sets': 0,
            'deletes': 0,
            'purges': 0,
            'migrations': 0,
            'errors': 0
        }

    @property
    def prefix(self) -> str:
        return self.store.prefix

    async def get(self, key: str) -> Optional[Any]:
        """Get a valid payload, or None when absent or invalid."""
        started = time.perf_counter()

        try:
            raw = await self.store.get(key)
        except StoreError as e:
            logger.error("Cache read failed", key=key, error=str(e))
            self.stats['errors'] += 1
            self._miss(key, started, "store_error")
            return None

        if raw is None:
            self._miss(key, started, "absent")
            return None

        try:
            entry = self.codec.decode(raw)
        except CorruptionError as e:
            await self._evict(key)
            self._corruption(key, started, [str(e)], len(raw))
            return None

        if entry.migrated:
            await self._write_back(key, entry)

        result = self.codec.validate(entry)
        if not result.valid:
            await self._evict(key)
            if result.is_corruption:
                self._corruption(key, started, result.issues, len(raw))
            else:
                self._miss(key, started, "expired", len(raw))
            return None

        self.stats['hits'] += 1
        safe_emit(self.monitor, 'record_hit', key, _elapsed_ms(started), len(raw))
        return entry.payload

    async def set(self, key: str, payload: Any, ttl: Optional[float] = None) -> None:
        """
        Encode and persist a payload, overwriting any existing entry.

        Raises:
            WriteError: If the payload is not JSON-serializable or the store
                rejects the write.
        """
        try:
            entry = self.codec.encode(payload, ttl=ttl)
            data = self.codec.serialize(entry)
        except (TypeError, ValueError) as e:
            self._write_failed(key, e)
            raise WriteError(f"Cannot serialize payload for {key}: {e}", key=key)

        try:
            await self.store.set(key, data)
        except StoreQuotaExceededError as e:
            logger.warning("Cache quota exceeded, purging oldest entry", key=key, error=str(e))
            try:
                if not await self.purge_oldest(exclude=key):
                    raise e
                await self.store.set(key, data)
            except StoreError as retry_error:
                self._write_failed(key, retry_error)
                raise WriteError(f"Failed to write {key} after purge: {retry_error}", key=key)
        except StoreError as e:
            self._write_failed(key, e)
            raise WriteError(f"Failed to write {key}: {e}", key=key)

        self.stats['sets'] += 1
        safe_emit(self.monitor, 'record_write', key, len(data), True)

    async def remove(self, key: str) -> None:
        await self.store.remove(key)
        self.stats['deletes'] += 1

    async def has(self, key: str) -> bool:
        """True when something is stored under key, valid or not."""
        try:
            return await self.store.get(key) is not None
        except StoreError as e:
            logger.error("Cache presence check failed", key=key, error=str(e))
            return False

    async def invalidate(self, pattern: str) -> int:
        """Remove every namespaced entry whose key contains pattern."""
        removed = 0
        for key in await self.store.keys():
            if pattern in self.store.storage_key(key):
                await self.store.remove(key)
                removed += 1

        self.stats['deletes'] += removed
        logger.info("Cache invalidated", pattern=pattern, removed=removed)
        return removed

    async def clear(self) -> int:
        """Remove every namespaced entry. Keys outside the namespace are untouched."""
        keys = await self.store.keys()
        for key in keys:
            await self.store.remove(key)

        self.stats['deletes'] += len(keys)
        logger.info("Cache cleared", prefix=self.prefix, removed=len(keys))
        return len(keys)

    async def purge_oldest(self, exclude: Optional[str] = None) -> Optional[str]:
        """Remove the oldest entry other than ``exclude``. Unreadable entries go first."""
        excluded = self.store.storage_key(exclude) if exclude else None
        oldest_key = None
        oldest_at = None

        for key in await self.store.keys():
            if self.store.storage_key(key) == excluded:
                continue
            raw = await self.store.get(key)
            if raw is None:
                continue
            try:
                written_at = self.codec.decode(raw).written_at
            except CorruptionError:
                written_at = float('-inf')
            if oldest_at is None or written_at < oldest_at:
                oldest_key, oldest_at = key, written_at

        if oldest_key is not None:
            await self.store.remove(oldest_key)
            self.stats['purges'] += 1
            logger.info("Purged oldest cache entry", key=oldest_key)
        return oldest_key

    async def get_health_status(self) -> Dict[str, Any]:
        """Report corruption since start and consistency of related keys."""
        issues = []
        first, second = self.consistency_keys
        has_first = await self.has(first)
        has_second = await self.has(second)

        if has_first != has_second:
            populated, empty = (first, second) if has_first else (second, first)
            issues.append(
                f"Inconsistent cache: {populated} is cached but {empty} is missing "
                f"({first} and {second} must be cached together)"
            )

        if self.corruption_count > 0:
            issues.append(f"{self.corruption_count} corrupted entries detected since start")

        return {
            'healthy': not issues,
            'issues': issues,
            'corruption_count': self.corruption_count,
            'consistency': {first: has_first, second: has_second},
            'stats': self.stats.copy(),
        }

    async def _evict(self, key: str) -> None:
        try:
            await self.store.remove(key)
            self.stats['deletes'] += 1
        except StoreError as e:
            logger.error("Failed to evict invalid entry", key=key, error=str(e))

    async def _write_back(self, key: str, entry) -> None:
        try:
            await self.store.set(key, self.codec.serialize(entry))
            self.stats['migrations'] += 1
            logger.info("Migrated legacy cache entry", key=key, version=entry.schema_version)
        except StoreError as e:
            logger.warning("Failed to write back migrated entry", key=key, error=str(e))

    def _miss(self, key: str, started: float, reason: str, size: int = 0) -> None:
        self.stats['misses'] += 1
        safe_emit(self.monitor, 'record_miss', key, _elapsed_ms(started), reason, size)

    def _corruption(self, key: str, started: float, issues, size: int = 0) -> None:
        self.stats['corruptions'] += 1
        self.corruption_count += 1
        logger.warning("Evicted corrupt cache entry", key=key, issues=issues)
        safe_emit(self.monitor, 'record_corruption', key, _elapsed_ms(started), issues, size)

    def _write_failed(self, key: str, error: Exception) -> None:
        self.stats['errors'] += 1
        logger.error("Cache write failed", key=key, error=str(error))
        safe_emit(self.monitor, 'record_write', key, 0, False, str(error))


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
