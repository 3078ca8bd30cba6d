"""
Cache-aside access to registered resources.

Reads check the unified cache first; on a miss (or a cached value the
resource's validator rejects) the remote fetch runs through the circuit
breaker, and accepted data is transformed and written back. Callers
always get a ``CacheAsideResult``; only an unregistered resource name
raises.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import structlog

from ..exceptions import RemoteFetchError, StoreError, UnknownResourceError, WriteError
from .unified_cache import UnifiedCache
from ...resilience.circuit_breaker import CircuitBreaker

logger = structlog.get_logger(__name__)

T = TypeVar('T')

Fetch = Callable[[], Awaitable[Any]]


class DataSource(str, Enum):
    """Where a cache-aside result came from."""
    CACHE = "cache"
    REMOTE = "remote"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class CacheAsideConfig:
    """Per-resource cache settings. Immutable once registered."""
    key: str
    validator: Callable[[Any], bool]
    transformer: Optional[Callable[[Any], Any]] = None
    ttl: Optional[float] = None  # seconds


@dataclass
class CacheAsideResult(Generic[T]):
    """Outcome of a cache-aside read."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    source: Optional[DataSource] = None
    cache_hit: bool = False
    validated: bool = False
    transformed: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CacheAsideOrchestrator:
    """Registry of cache-aside resources."""

    def __init__(self, cache: UnifiedCache, circuit_breaker: Optional[CircuitBreaker] = None):
        self.cache = cache
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self._configs: Dict[str, CacheAsideConfig] = {}

    def register_resource(self, name: str, config: CacheAsideConfig) -> None:
        if name in self._configs:
            raise ValueError(f"Resource already registered: {name}")
        self._configs[name] = config
        logger.debug("Registered cache-aside resource", name=name, key=config.key, ttl=config.ttl)

    def is_registered(self, name: str) -> bool:
        return name in self._configs

    def get_config(self, name: str) -> CacheAsideConfig:
        config = self._configs.get(name)
        if config is None:
            raise UnknownResourceError(name)
        return config

    async def get(
        self,
        name: str,
        remote_fetch: Fetch,
        fallback_fetch: Optional[Fetch] = None
    ) -> CacheAsideResult:
        """
        Read a resource cache-first.

        Raises:
            UnknownResourceError: If ``name`` was never registered.
        """
        config = self.get_config(name)

        cached = await self.cache.get(config.key)
        if cached is not None:
            if _passes(config.validator, cached):
                return CacheAsideResult(
                    success=True,
                    data=cached,
                    source=DataSource.CACHE,
                    cache_hit=True,
                    validated=True
                )
            logger.warning("Cached data failed validation, evicting", name=name, key=config.key)
            try:
                await self.cache.remove(config.key)
            except StoreError as e:
                logger.error("Failed to evict cached data", name=name, error=str(e))

        async def primary():
            data = await remote_fetch()
            if data is None:
                raise RemoteFetchError(f"No data returned for {name}", resource=name)
            return data

        breaker_result = await self.circuit_breaker.execute(
            f"cache_aside_{name}", primary, fallback_fetch
        )

        if not breaker_result.success:
            logger.error("Cache-aside fetch failed", name=name, error=breaker_result.error)
            return CacheAsideResult(success=False, error=breaker_result.error)

        data = breaker_result.data
        source = DataSource.FALLBACK if breaker_result.from_fallback else DataSource.REMOTE

        if not _passes(config.validator, data):
            logger.warning("Fetched data failed validation", name=name, source=source.value)
            return CacheAsideResult(
                success=False,
                error=f"Data validation failed for {name}",
                source=source
            )

        transformed = False
        if config.transformer is not None:
            try:
                data = config.transformer(data)
                transformed = True
            except Exception as e:
                logger.error("Transformer failed", name=name, error=str(e))
                return CacheAsideResult(
                    success=False,
                    error=f"Transformation failed for {name}: {e}",
                    source=source,
                    validated=True
                )

        try:
            await self.cache.set(config.key, data, ttl=config.ttl)
        except WriteError as e:
            logger.warning("Could not cache fetched data", name=name, error=str(e))

        return CacheAsideResult(
            success=True,
            data=data,
            source=source,
            cache_hit=False,
            validated=True,
            transformed=transformed
        )

    async def set(self, name: str, data: Any) -> bool:
        """
        Write a resource directly.

        Raises:
            UnknownResourceError: If ``name`` was never registered.
        """
        config = self.get_config(name)

        if not _passes(config.validator, data):
            logger.warning("Refusing to cache invalid data", name=name)
            return False

        if config.transformer is not None:
            data = config.transformer(data)

        try:
            await self.cache.set(config.key, data, ttl=config.ttl)
        except WriteError as e:
            logger.error("Cache-aside set failed", name=name, error=str(e))
            return False
        return True

    async def invalidate(self, name: str) -> bool:
        config = self._configs.get(name)
        if config is None:
            return False
        await self.cache.remove(config.key)
        logger.info("Invalidated cache-aside resource", name=name, key=config.key)
        return True

    async def get_cache_stats(self, name: str) -> Dict[str, Any]:
        """Presence and circuit state for a registered resource."""
        config = self.get_config(name)
        operation_name = f"cache_aside_{name}"
        return {
            'name': name,
            'key': config.key,
            'ttl': config.ttl,
            'cached': await self.cache.has(config.key),
            'circuit_state': self.circuit_breaker.get_state(operation_name).value,
        }


def _passes(validator: Callable[[Any], bool], data: Any) -> bool:
    try:
        return bool(validator(data))
    except Exception as e:
        logger.warning("Validator raised", error=str(e))
        return False


def non_empty_list(data: Any) -> bool:
    return isinstance(data, list) and len(data) > 0


def is_list(data: Any) -> bool:
    return isinstance(data, list)


DEFAULT_RESOURCES = {
    'attendees': CacheAsideConfig(key='attendees', validator=non_empty_list, ttl=5 * 60),
    'agenda_items': CacheAsideConfig(key='agenda_items', validator=non_empty_list, ttl=2 * 60),
    'sponsors': CacheAsideConfig(key='sponsors', validator=is_list, ttl=30 * 60),
    'hotels': CacheAsideConfig(key='hotels', validator=is_list, ttl=30 * 60),
    'dining_options': CacheAsideConfig(key='dining_options', validator=is_list, ttl=30 * 60),
}


def register_default_resources(orchestrator: CacheAsideOrchestrator) -> None:
    """Register the standard event resources."""
    for name, config in DEFAULT_RESOURCES.items():
        orchestrator.register_resource(name, config)
