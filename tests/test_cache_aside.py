"""
Unit tests for the cache-aside orchestrator.
"""
import dataclasses
import pytest
from unittest.mock import AsyncMock

from src.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from src.shared.caching.cache_aside import (
    CacheAsideConfig, CacheAsideOrchestrator, DataSource,
    non_empty_list, register_default_resources
)
from src.shared.exceptions import UnknownResourceError


@pytest.fixture
def orchestrator(cache, clock):
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3), clock=clock)
    orchestrator = CacheAsideOrchestrator(cache, breaker)
    orchestrator.register_resource(
        "items",
        CacheAsideConfig(key="items", validator=non_empty_list, ttl=5.0)
    )
    return orchestrator


class TestEndToEnd:
    """Test the remote-then-cache read path."""

    @pytest.mark.asyncio
    async def test_remote_then_cache(self, orchestrator):
        """Test the first read fetches remotely and the second hits the cache."""
        fetch = AsyncMock(return_value=[{"id": 1}])

        first = await orchestrator.get("items", fetch)
        assert first.success is True
        assert first.data == [{"id": 1}]
        assert first.source == DataSource.REMOTE
        assert first.cache_hit is False

        second = await orchestrator.get("items", fetch)
        assert second.success is True
        assert second.data == [{"id": 1}]
        assert second.source == DataSource.CACHE
        assert second.cache_hit is True

        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self, orchestrator, clock):
        fetch = AsyncMock(return_value=[{"id": 1}])

        await orchestrator.get("items", fetch)
        clock.advance(6)
        result = await orchestrator.get("items", fetch)

        assert result.source == DataSource.REMOTE
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_cached_data_is_evicted(self, orchestrator, cache):
        """Test cached data failing the validator falls through to remote."""
        await cache.set("items", [])
        fetch = AsyncMock(return_value=[{"id": 2}])

        result = await orchestrator.get("items", fetch)

        assert result.source == DataSource.REMOTE
        assert result.data == [{"id": 2}]
        assert await cache.get("items") == [{"id": 2}]


class TestFailures:
    """Test fetch failures and fallbacks."""

    @pytest.mark.asyncio
    async def test_fallback_used_when_remote_fails(self, orchestrator, cache):
        fetch = AsyncMock(side_effect=RuntimeError("offline"))
        fallback = AsyncMock(return_value=[{"id": "backup"}])

        result = await orchestrator.get("items", fetch, fallback)

        assert result.success is True
        assert result.source == DataSource.FALLBACK
        assert await cache.get("items") == [{"id": "backup"}]

    @pytest.mark.asyncio
    async def test_both_fail_returns_result(self, orchestrator):
        """Test total failure is reported, never raised."""
        result = await orchestrator.get(
            "items",
            AsyncMock(side_effect=RuntimeError("offline")),
            AsyncMock(side_effect=RuntimeError("no backup"))
        )

        assert result.success is False
        assert "offline" in result.error
        assert "no backup" in result.error
        assert result.data is None

    @pytest.mark.asyncio
    async def test_none_from_remote_is_failure(self, orchestrator):
        result = await orchestrator.get("items", AsyncMock(return_value=None))

        assert result.success is False
        assert "No data returned" in result.error

    @pytest.mark.asyncio
    async def test_rejected_remote_data_is_not_cached(self, orchestrator, cache):
        result = await orchestrator.get("items", AsyncMock(return_value=[]))

        assert result.success is False
        assert await cache.has("items") is False

    @pytest.mark.asyncio
    async def test_write_failure_still_returns_data(self, orchestrator, backend):
        backend.available = False

        result = await orchestrator.get("items", AsyncMock(return_value=[{"id": 1}]))

        assert result.success is True
        assert result.data == [{"id": 1}]


class TestRegistration:
    """Test resource registration rules."""

    @pytest.mark.asyncio
    async def test_unknown_resource_get_raises(self, orchestrator):
        with pytest.raises(UnknownResourceError):
            await orchestrator.get("unknown", AsyncMock(return_value=[1]))

    @pytest.mark.asyncio
    async def test_unknown_resource_set_raises(self, orchestrator):
        with pytest.raises(UnknownResourceError):
            await orchestrator.set("unknown", [1])

    @pytest.mark.asyncio
    async def test_unknown_resource_invalidate_returns_false(self, orchestrator):
        assert await orchestrator.invalidate("unknown") is False

    def test_duplicate_registration_rejected(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.register_resource("items", CacheAsideConfig(key="other", validator=non_empty_list))

    def test_config_is_immutable(self):
        config = CacheAsideConfig(key="items", validator=non_empty_list)
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.ttl = 10

    def test_default_resources(self, cache):
        orchestrator = CacheAsideOrchestrator(cache)
        register_default_resources(orchestrator)

        for name in ("attendees", "agenda_items", "sponsors", "hotels", "dining_options"):
            assert orchestrator.is_registered(name)
        assert orchestrator.get_config("agenda_items").ttl == 120


class TestSetAndInvalidate:
    """Test direct writes and invalidation."""

    @pytest.mark.asyncio
    async def test_transformer_applied(self, cache):
        orchestrator = CacheAsideOrchestrator(cache)
        orchestrator.register_resource("names", CacheAsideConfig(
            key="names",
            validator=non_empty_list,
            transformer=lambda rows: sorted(rows)
        ))

        result = await orchestrator.get("names", AsyncMock(return_value=["b", "a"]))

        assert result.transformed is True
        assert result.data == ["a", "b"]
        assert await cache.get("names") == ["a", "b"]

    @pytest.mark.asyncio
    async def test_set_valid_data(self, orchestrator, cache):
        assert await orchestrator.set("items", [{"id": 5}]) is True
        assert await cache.get("items") == [{"id": 5}]

    @pytest.mark.asyncio
    async def test_set_invalid_data(self, orchestrator, cache):
        assert await orchestrator.set("items", []) is False
        assert await cache.has("items") is False

    @pytest.mark.asyncio
    async def test_invalidate(self, orchestrator, cache):
        await orchestrator.set("items", [1])

        assert await orchestrator.invalidate("items") is True
        assert await cache.has("items") is False

    @pytest.mark.asyncio
    async def test_cache_stats(self, orchestrator):
        await orchestrator.set("items", [1])

        stats = await orchestrator.get_cache_stats("items")
        assert stats["cached"] is True
        assert stats["circuit_state"] == "closed"
