"""
Data-Sync Coordinator - pulls remote tables into the unified cache.

Tables sync one after another in a fixed order. A failure in one table is
recorded and the remaining tables still sync.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from ..consistency.validator import ConsistencyValidator
from ..shared.cache_monitor import CacheMonitor, safe_emit
from ..shared.caching.unified_cache import UnifiedCache
from ..shared.exceptions import RemoteFetchError
from .record_processing import process_records
from .remote_provider import RemoteDataProvider

logger = structlog.get_logger(__name__)

DEFAULT_RESOURCES = (
    'attendees',
    'standardized_companies',
    'company_aliases',
    'seat_assignments',
    'agenda_items',
    'agenda_item_speakers',
    'dining_options',
    'hotels',
    'seating_configurations',
)

DEFAULT_APPLICATION_RESOURCES = (
    'agenda_item_metadata',
    'dining_item_metadata',
)


@dataclass
class SyncResult:
    """Aggregate outcome of a sync run."""
    success: bool = True
    synced_resources: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_records: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'synced_resources': list(self.synced_resources),
            'errors': list(self.errors),
            'total_records': self.total_records,
        }


class DataSyncCoordinator:
    """Syncs an ordered list of remote tables into the cache."""

    def __init__(
        self,
        provider: RemoteDataProvider,
        cache: UnifiedCache,
        validator: Optional[ConsistencyValidator] = None,
        resources: Sequence[str] = DEFAULT_RESOURCES,
        application_provider: Optional[RemoteDataProvider] = None,
        application_resources: Sequence[str] = DEFAULT_APPLICATION_RESOURCES,
        regulated_resources: Iterable[str] = ('attendees',),
        monitor: Optional[CacheMonitor] = None
    ):
        self.provider = provider
        self.cache = cache
        self.validator = validator or ConsistencyValidator(monitor=monitor)
        self.resources = list(resources)
        self.application_provider = application_provider
        self.application_resources = list(application_resources)
        self.regulated_resources = set(regulated_resources)
        self.monitor = monitor

    def _plan(self) -> List[Tuple[str, RemoteDataProvider]]:
        plan = [(name, self.provider) for name in self.resources]
        if self.application_provider is not None:
            plan.extend((name, self.application_provider) for name in self.application_resources)
        elif self.application_resources:
            logger.debug("No application provider configured, skipping", resources=self.application_resources)
        return plan

    def _provider_for(self, resource: str) -> RemoteDataProvider:
        if resource in self.application_resources and resource not in self.resources:
            if self.application_provider is None:
                raise RemoteFetchError(f"No provider configured for {resource}", resource=resource)
            return self.application_provider
        return self.provider

    async def sync_all(self) -> SyncResult:
        """Sync every table, isolating per-table failures."""
        result = SyncResult()
        logger.info("Starting data sync", resources=len(self.resources))

        for resource, provider in self._plan():
            try:
                count = await self._sync_resource(resource, provider)
            except Exception as e:
                message = f"Failed to sync {resource}: {e}"
                logger.error("Resource sync failed", resource=resource, error=str(e))
                result.errors.append(message)
                continue

            if resource not in result.synced_resources:
                result.synced_resources.append(resource)
            result.total_records += count

        result.success = not result.errors
        logger.info(
            "Data sync finished",
            success=result.success,
            synced=len(result.synced_resources),
            failed=len(result.errors),
            total_records=result.total_records
        )
        safe_emit(
            self.monitor,
            'record_sync',
            result.success,
            result.synced_resources,
            result.errors,
            result.total_records
        )
        return result

    async def sync_table(self, resource: str) -> List[Dict[str, Any]]:
        """
        Sync a single table and return what was cached.

        Raises:
            RemoteFetchError, ValidationError, WriteError
        """
        provider = self._provider_for(resource)
        records = await self._fetch(resource, provider)
        processed = self._prepare(resource, records)
        await self.cache.set(resource, processed)
        return processed

    async def get_cached_table(self, resource: str) -> List[Dict[str, Any]]:
        """Read a table from cache, alerting on rule violations for regulated tables."""
        data = await self.cache.get(resource)
        if not data:
            return []
        if resource in self.regulated_resources:
            self.validator.validate_after_read(data, resource)
        return data

    async def clear_cache(self) -> int:
        return await self.cache.clear()

    async def _sync_resource(self, resource: str, provider: RemoteDataProvider) -> int:
        records = await self._fetch(resource, provider)
        processed = self._prepare(resource, records)
        await self.cache.set(resource, processed)
        logger.debug("Synced resource", resource=resource, fetched=len(records), cached=len(processed))
        return len(processed)

    async def _fetch(self, resource: str, provider: RemoteDataProvider) -> List[Dict[str, Any]]:
        records = await provider.fetch_all(resource)
        if records is None:
            raise RemoteFetchError(f"No data returned for {resource}", resource=resource)
        if not isinstance(records, list):
            raise RemoteFetchError(f"Expected a list of records for {resource}", resource=resource)
        return records

    def _prepare(self, resource: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        processed = process_records(resource, records)
        if resource in self.regulated_resources:
            self.validator.validate_before_write(processed, resource)
        return processed
