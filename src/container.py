"""
Composition root for the offline cache sync layer.

Builds one instance of each service from settings and owns their
lifecycle. Applications create a container, ``await init()``, use the
exposed services, and ``await shutdown()`` on exit.
"""
from typing import Any, Callable, List, Optional

import structlog

from .consistency.validator import ConsistencyValidator
from .resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from .resilience.readiness_gate import ServiceReadinessGate
from .resilience.retry import RetryPolicy, Sleep
from .shared.cache_monitor import CacheMonitor, MetricsCacheMonitor
from .shared.caching.cache_aside import CacheAsideOrchestrator, register_default_resources
from .shared.caching.codec import CacheEntryCodec
from .shared.caching.entry_store import EntryStore, InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from .shared.caching.unified_cache import UnifiedCache
from .shared.config import Settings, get_settings, validate_configuration
from .shared.exceptions import InitializationError
from .shared.logging_config import LoggingConfig
from .sync.auth_sync import AttendeeProfileRefresher, AuthenticationTriggeredSync
from .sync.company_normalization import CompanyNormalizationService
from .sync.data_sync import DataSyncCoordinator
from .sync.remote_provider import RemoteDataProvider, RestDataProvider, StaticDataProvider

logger = structlog.get_logger(__name__)


class CacheSyncContainer:
    """Holds the process-wide service instances."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        provider: Optional[RemoteDataProvider] = None,
        application_provider: Optional[RemoteDataProvider] = None,
        backend: Optional[KeyValueStore] = None,
        monitor: Optional[CacheMonitor] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Sleep] = None
    ):
        self.settings = settings or get_settings()
        cache_settings = self.settings.cache
        sync_settings = self.settings.sync

        self.monitor = monitor or MetricsCacheMonitor(max_alerts=self.settings.monitoring.monitor_max_alerts)
        self.backend = backend or self._build_backend()
        self.codec = CacheEntryCodec.from_settings(cache_settings, clock=clock)
        self.cache = UnifiedCache(
            EntryStore(self.backend, prefix=cache_settings.cache_namespace_prefix),
            codec=self.codec,
            monitor=self.monitor,
            consistency_keys=cache_settings.get_consistency_keys()
        )

        self.circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig.from_settings(self.settings.circuit_breaker),
            monitor=self.monitor
        )
        self.cache_aside = CacheAsideOrchestrator(self.cache, self.circuit_breaker)
        register_default_resources(self.cache_aside)

        self.validator = ConsistencyValidator.from_settings(self.settings.validation, monitor=self.monitor)
        self.provider = provider or self._build_provider()
        self.application_provider = application_provider or self._build_application_provider()

        self.coordinator = DataSyncCoordinator(
            self.provider,
            self.cache,
            validator=self.validator,
            resources=sync_settings.get_resources(),
            application_provider=self.application_provider,
            application_resources=sync_settings.get_application_resources(),
            regulated_resources=sync_settings.get_regulated_resources(),
            monitor=self.monitor
        )

        self.company_normalization = CompanyNormalizationService(self.provider, self.cache)
        self.readiness_gate = ServiceReadinessGate([
            ('company_normalization', self.company_normalization.initialize),
        ])

        self.retry_policy = RetryPolicy(
            max_attempts=sync_settings.sync_retry_attempts,
            base_delay=sync_settings.sync_retry_base_delay,
            max_delay=sync_settings.sync_retry_max_delay,
            attempt_timeout=sync_settings.sync_fetch_timeout
        )
        self.sleep = sleep
        self.auth_sync = AuthenticationTriggeredSync(
            self.readiness_gate,
            self.coordinator,
            self.cache,
            required_keys=sync_settings.get_required_keys(),
            retry_policy=self.retry_policy,
            sleep=sleep
        )
        self._initialized = False

    def _build_backend(self) -> KeyValueStore:
        cache_settings = self.settings.cache
        if cache_settings.cache_backend == "redis":
            return RedisKeyValueStore(cache_settings.redis_url, timeout=cache_settings.redis_timeout)
        return InMemoryKeyValueStore(quota_bytes=cache_settings.cache_memory_quota_bytes)

    def _build_provider(self) -> RemoteDataProvider:
        if self.settings.sync.provider_url:
            return RestDataProvider.from_settings(self.settings.sync)
        logger.warning("No remote provider configured, using an empty static provider")
        return StaticDataProvider()

    def _build_application_provider(self) -> Optional[RemoteDataProvider]:
        sync_settings = self.settings.sync
        if not sync_settings.application_provider_url:
            return None
        return RestDataProvider(
            sync_settings.application_provider_url,
            sync_settings.application_provider_api_key,
            timeout=sync_settings.sync_fetch_timeout or 30.0
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        """
        Validate configuration and connect backends.

        Raises:
            InitializationError: If configuration is invalid.
        """
        if self._initialized:
            return

        errors = validate_configuration(self.settings)
        if errors:
            raise InitializationError(f"Invalid configuration: {'; '.join(errors)}")

        if not self.settings.is_testing():
            monitoring = self.settings.monitoring
            LoggingConfig.setup_logging(level=monitoring.log_level.value, format_type=monitoring.log_format)

        if isinstance(self.backend, RedisKeyValueStore):
            await self.backend.connect()

        self._initialized = True
        logger.info(
            "Cache sync container initialized",
            backend=type(self.backend).__name__,
            provider=type(self.provider).__name__
        )

    async def shutdown(self) -> None:
        """Close backends and providers."""
        if not self._initialized:
            return

        for closeable in self._closeables():
            try:
                await closeable.close()
            except Exception as e:
                logger.error("Error during shutdown", component=type(closeable).__name__, error=str(e))

        self._initialized = False
        logger.info("Cache sync container shut down")

    def _closeables(self) -> List[Any]:
        items = [self.backend, self.provider]
        if self.application_provider is not None:
            items.append(self.application_provider)
        return items

    def add_attendee_refresher(self, attendee_id: Any) -> AttendeeProfileRefresher:
        """Refresh the signed-in attendee's profile during authentication sync."""
        refresher = AttendeeProfileRefresher(self.provider, self.cache, attendee_id)
        self.auth_sync.add_refresher(refresher)
        return refresher

    async def get_health_status(self) -> dict:
        """Cache health plus circuit and monitor state."""
        status = await self.cache.get_health_status()
        status['circuits'] = self.circuit_breaker.get_all_states()
        status['services_ready'] = self.readiness_gate.is_ready()
        if isinstance(self.monitor, MetricsCacheMonitor):
            status['metrics'] = self.monitor.get_metrics()
        return status
