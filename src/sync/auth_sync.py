"""
Authentication-Triggered Sync

Runs after a user signs in:

1. Gating - wait for dependent services to be ready
2. Syncing - run the data-sync coordinator and resource refreshers concurrently
3. Validating - check that the required cache keys are populated

Concurrent calls share one in-flight run. A failed run may leave the
cache partially populated; whatever synced stays cached and the result
reports what failed. Missing keys are reported, not retried.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..resilience.readiness_gate import ServiceReadinessGate
from ..resilience.retry import RetryPolicy, Sleep, retry_with_backoff
from ..shared.caching.unified_cache import UnifiedCache
from ..shared.exceptions import InitializationError, RemoteFetchError
from ..shared.logging_config import CorrelationContext
from .data_sync import DataSyncCoordinator
from .record_processing import sanitize
from .remote_provider import RemoteDataProvider

logger = structlog.get_logger(__name__)


class SyncStage(str, Enum):
    """Stages of an authentication-triggered sync."""
    NOT_STARTED = "not_started"
    GATING = "gating"
    SYNCING = "syncing"
    VALIDATING = "validating"
    DONE = "done"


@dataclass
class AuthenticationSyncResult:
    """Outcome of an authentication-triggered sync."""
    success: bool
    error: Optional[str] = None
    synced_resources: List[str] = field(default_factory=list)
    total_records: int = 0
    missing_cache_keys: List[str] = field(default_factory=list)
    stage: SyncStage = SyncStage.NOT_STARTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'error': self.error,
            'synced_resources': list(self.synced_resources),
            'total_records': self.total_records,
            'missing_cache_keys': list(self.missing_cache_keys),
            'stage': self.stage.value,
        }


class ResourceRefresher(ABC):
    """A refresh job run alongside the coordinator."""

    name: str = "resource"

    @abstractmethod
    async def refresh(self) -> int:
        """Refresh the resource and return the number of records cached."""


class AttendeeProfileRefresher(ResourceRefresher):
    """Caches the signed-in attendee's own sanitized profile."""

    name = "attendee_profile"

    def __init__(self, provider: RemoteDataProvider, cache: UnifiedCache, attendee_id: Any):
        self.provider = provider
        self.cache = cache
        self.attendee_id = attendee_id

    async def refresh(self) -> int:
        records = await self.provider.fetch_all('attendees')
        profile = next((r for r in records or [] if r.get('id') == self.attendee_id), None)
        if profile is None:
            raise RemoteFetchError(f"Attendee {self.attendee_id} not found", resource='attendees')

        await self.cache.set(self.name, sanitize(self.name, [profile])[0])
        logger.debug("Attendee profile refreshed", attendee_id=self.attendee_id)
        return 1


class AuthenticationTriggeredSync:
    """Coordinated sync run after authentication."""

    def __init__(
        self,
        gate: ServiceReadinessGate,
        coordinator: DataSyncCoordinator,
        cache: UnifiedCache,
        refreshers: Optional[Sequence[ResourceRefresher]] = None,
        required_keys: Sequence[str] = ('agenda_items', 'attendees'),
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Sleep] = None
    ):
        self.gate = gate
        self.coordinator = coordinator
        self.cache = cache
        self.refreshers = list(refreshers or [])
        self.required_keys = list(required_keys)
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep
        self.stage = SyncStage.NOT_STARTED
        self._in_flight: Optional[asyncio.Future] = None
        self.run_count = 0

    def add_refresher(self, refresher: ResourceRefresher) -> None:
        self.refreshers.append(refresher)

    async def run_after_authentication(self) -> AuthenticationSyncResult:
        """Run the sync, or join the run already in flight."""
        if self._in_flight is not None:
            return await asyncio.shield(self._in_flight)

        in_flight = self._in_flight = asyncio.get_running_loop().create_future()
        result = AuthenticationSyncResult(success=False, error="Sync interrupted", stage=self.stage)
        try:
            result = await self._run()
        finally:
            self._in_flight = None
            in_flight.set_result(result)
        return result

    async def _run(self) -> AuthenticationSyncResult:
        self.run_count += 1
        with CorrelationContext(operation="auth_sync"):
            self.stage = SyncStage.GATING
            logger.info("Authentication sync started")
            try:
                await self.gate.ensure_ready()
            except InitializationError as e:
                logger.error("Services not ready, aborting sync", error=str(e))
                return AuthenticationSyncResult(
                    success=False,
                    error=f"Service initialization failed: {e}",
                    stage=SyncStage.GATING
                )

            self.stage = SyncStage.SYNCING
            outcomes = await asyncio.gather(
                self.coordinator.sync_all(),
                *(self._refresh(refresher) for refresher in self.refreshers),
                return_exceptions=True
            )

            errors: List[str] = []
            synced: List[str] = []
            total_records = 0

            sync_outcome = outcomes[0]
            if isinstance(sync_outcome, BaseException):
                errors.append(f"Data sync failed: {sync_outcome}")
            else:
                synced.extend(sync_outcome.synced_resources)
                total_records += sync_outcome.total_records
                errors.extend(sync_outcome.errors)

            for refresher, outcome in zip(self.refreshers, outcomes[1:]):
                if isinstance(outcome, BaseException):
                    errors.append(f"Failed to refresh {refresher.name}: {outcome}")
                    continue
                if refresher.name not in synced:
                    synced.append(refresher.name)
                total_records += outcome

            self.stage = SyncStage.VALIDATING
            missing = [key for key in self.required_keys if not await self.cache.has(key)]
            if missing:
                errors.append(f"Missing required cache keys: {', '.join(missing)}")

            self.stage = SyncStage.DONE
            result = AuthenticationSyncResult(
                success=not errors,
                error="; ".join(errors) or None,
                synced_resources=synced,
                total_records=total_records,
                missing_cache_keys=missing,
                stage=SyncStage.DONE
            )
            logger.info(
                "Authentication sync finished",
                success=result.success,
                synced=len(synced),
                total_records=total_records,
                missing_cache_keys=missing,
                errors=len(errors)
            )
            return result

    async def _refresh(self, refresher: ResourceRefresher) -> int:
        return await retry_with_backoff(
            refresher.refresh,
            policy=self.retry_policy,
            sleep=self.sleep,
            operation_name=f"refresh_{refresher.name}"
        )
