"""
Unit tests for the authentication-triggered sync.
Tests gating, concurrent fan-out, post-sync validation and single-flight runs.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock

from src.resilience.readiness_gate import ServiceReadinessGate
from src.resilience.retry import RetryPolicy
from src.sync.auth_sync import (
    AttendeeProfileRefresher, AuthenticationTriggeredSync, ResourceRefresher, SyncStage
)
from src.sync.data_sync import DataSyncCoordinator


class FlakyRefresher(ResourceRefresher):
    """Fails a set number of times before succeeding."""

    name = "flaky"

    def __init__(self, failures: int):
        self.failures = failures
        self.attempts = 0

    async def refresh(self) -> int:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError(f"attempt {self.attempts} failed")
        return 7


@pytest.fixture
def tables(sample_attendees, sample_agenda):
    return {"attendees": sample_attendees, "agenda_items": sample_agenda}


@pytest.fixture
def provider(make_provider, tables):
    return make_provider(tables)


@pytest.fixture
def initializer():
    return AsyncMock()


@pytest.fixture
def auth_sync(provider, cache, initializer, fake_sleep):
    coordinator = DataSyncCoordinator(provider, cache, resources=["attendees", "agenda_items"])
    gate = ServiceReadinessGate([("company_normalization", initializer)])
    return AuthenticationTriggeredSync(
        gate,
        coordinator,
        cache,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0),
        sleep=fake_sleep
    )


class TestRun:
    """Test a full authentication sync."""

    @pytest.mark.asyncio
    async def test_successful_run(self, auth_sync, cache, provider):
        auth_sync.add_refresher(AttendeeProfileRefresher(provider, cache, "a1"))

        result = await auth_sync.run_after_authentication()

        assert result.success is True
        assert result.error is None
        assert result.stage == SyncStage.DONE
        assert result.synced_resources == ["attendees", "agenda_items", "attendee_profile"]
        assert result.total_records == 2 + 2 + 1
        assert result.missing_cache_keys == []

        profile = await cache.get("attendee_profile")
        assert profile["id"] == "a1"
        assert "access_code" not in profile

    @pytest.mark.asyncio
    async def test_gate_settles_before_fan_out(self, auth_sync, provider, initializer):
        seen = []
        initializer.side_effect = lambda: seen.append(list(provider.calls))

        await auth_sync.run_after_authentication()

        assert seen == [[]]
        assert provider.calls == ["attendees", "agenda_items"]

    @pytest.mark.asyncio
    async def test_gate_failure_stops_run(self, auth_sync, provider, initializer):
        initializer.side_effect = RuntimeError("companies unavailable")

        result = await auth_sync.run_after_authentication()

        assert result.success is False
        assert result.stage == SyncStage.GATING
        assert "companies unavailable" in result.error
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_required_keys_reported(self, cache, make_provider, tables, initializer, fake_sleep):
        """Test a failed resource leaves the rest cached and is reported."""
        provider = make_provider(tables, failing={"agenda_items"})
        coordinator = DataSyncCoordinator(provider, cache, resources=["attendees", "agenda_items"])
        auth_sync = AuthenticationTriggeredSync(
            ServiceReadinessGate([("svc", initializer)]), coordinator, cache, sleep=fake_sleep
        )

        result = await auth_sync.run_after_authentication()

        assert result.success is False
        assert result.missing_cache_keys == ["agenda_items"]
        assert "Failed to sync agenda_items" in result.error
        assert "Missing required cache keys: agenda_items" in result.error
        assert await cache.has("attendees") is True
        # Reported, not retried
        assert provider.calls.count("agenda_items") == 1


class TestRefreshers:
    """Test refreshers run with retry."""

    @pytest.mark.asyncio
    async def test_refresher_retried_with_backoff(self, auth_sync, fake_sleep):
        refresher = FlakyRefresher(failures=2)
        auth_sync.add_refresher(refresher)

        result = await auth_sync.run_after_authentication()

        assert result.success is True
        assert refresher.attempts == 3
        assert fake_sleep.delays == [1.0, 2.0]
        assert "flaky" in result.synced_resources

    @pytest.mark.asyncio
    async def test_exhausted_refresher_fails_run(self, auth_sync, cache):
        auth_sync.add_refresher(FlakyRefresher(failures=10))

        result = await auth_sync.run_after_authentication()

        assert result.success is False
        assert "Failed to refresh flaky" in result.error
        assert await cache.has("agenda_items") is True

    @pytest.mark.asyncio
    async def test_unknown_attendee_profile(self, auth_sync, provider, cache):
        auth_sync.add_refresher(AttendeeProfileRefresher(provider, cache, "nobody"))

        result = await auth_sync.run_after_authentication()

        assert result.success is False
        assert "attendee_profile" not in result.synced_resources


class TestSingleFlight:
    """Test concurrent runs collapse into one."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_initialize_once(self, auth_sync, initializer):
        release = asyncio.Event()

        async def slow_init():
            await release.wait()

        initializer.side_effect = slow_init

        first = asyncio.create_task(auth_sync.run_after_authentication())
        second = asyncio.create_task(auth_sync.run_after_authentication())
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(first, second)

        assert initializer.await_count == 1
        assert auth_sync.run_count == 1
        assert results[0] is results[1]
        assert results[0].success is True

    @pytest.mark.asyncio
    async def test_new_run_after_settling(self, auth_sync, provider):
        await auth_sync.run_after_authentication()
        await auth_sync.run_after_authentication()

        assert auth_sync.run_count == 2
        assert provider.calls.count("attendees") == 2
