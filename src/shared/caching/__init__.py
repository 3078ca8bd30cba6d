"""
Versioned local cache for remote data.

This module provides:
- Checksummed, versioned cache entries with shape-based TTLs
- A namespaced key-value layer with in-memory and Redis backends
- A unified cache that evicts expired or corrupt entries on read
- Cache-aside access to registered resources through a circuit breaker
"""

from .codec import (
    CorruptionLevel,
    CacheEntry,
    ValidationResult,
    CacheEntryCodec,
    checksum
)

from .entry_store import (
    KeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    EntryStore
)

from .unified_cache import UnifiedCache

from .cache_aside import (
    DataSource,
    CacheAsideConfig,
    CacheAsideResult,
    CacheAsideOrchestrator,
    register_default_resources
)

__all__ = [
    # Entries
    'CorruptionLevel',
    'CacheEntry',
    'ValidationResult',
    'CacheEntryCodec',
    'checksum',

    # Storage
    'KeyValueStore',
    'InMemoryKeyValueStore',
    'RedisKeyValueStore',
    'EntryStore',

    # Cache
    'UnifiedCache',

    # Cache-aside
    'DataSource',
    'CacheAsideConfig',
    'CacheAsideResult',
    'CacheAsideOrchestrator',
    'register_default_resources'
]
