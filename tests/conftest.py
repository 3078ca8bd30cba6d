"""
Shared fixtures for the cache sync tests.
"""
import pytest
from typing import Dict, List, Optional

from src.shared.caching.codec import CacheEntryCodec
from src.shared.caching.entry_store import EntryStore, InMemoryKeyValueStore
from src.shared.caching.unified_cache import UnifiedCache
from src.shared.cache_monitor import MetricsCacheMonitor
from src.shared.exceptions import RemoteFetchError
from src.sync.remote_provider import RemoteDataProvider


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeProvider(RemoteDataProvider):
    """In-memory provider that can be told to fail per resource."""

    def __init__(self, tables: Optional[Dict[str, list]] = None, failing: Optional[set] = None):
        self.tables = tables or {}
        self.failing = set(failing or [])
        self.calls: List[str] = []

    async def fetch_all(self, resource_name: str) -> list:
        self.calls.append(resource_name)
        if resource_name in self.failing:
            raise RemoteFetchError(f"{resource_name} unavailable", resource=resource_name)
        return [dict(row) for row in self.tables.get(resource_name, [])]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def backend():
    return InMemoryKeyValueStore()


@pytest.fixture
def monitor():
    return MetricsCacheMonitor()


@pytest.fixture
def codec(clock):
    return CacheEntryCodec(clock=clock)


@pytest.fixture
def cache(backend, codec, monitor):
    return UnifiedCache(EntryStore(backend, prefix="kn_cache_"), codec=codec, monitor=monitor)


@pytest.fixture
def sample_attendees():
    """Confirmed, active attendees carrying confidential fields."""
    return [
        {
            "id": "a1",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "registration_status": "confirmed",
            "is_active": True,
            "email": "ada@example.com",
            "access_code": "123456",
            "company": "Analytical Engines",
        },
        {
            "id": "a2",
            "first_name": "Grace",
            "last_name": "Hopper",
            "registration_status": "confirmed",
            "is_active": True,
            "mobile_phone": "555-0100",
            "access_code": "654321",
            "company": "Navy",
        },
    ]


@pytest.fixture
def sample_agenda():
    return [
        {"id": 2, "title": "Keynote", "date": "2025-10-21", "start_time": "09:00", "end_time": "10:00"},
        {"id": 1, "title": "Welcome", "date": "2025-10-20", "start_time": "18:00", "end_time": "19:00"},
        {"id": 3, "title": "Cancelled", "date": "2025-10-20", "start_time": "08:00", "is_active": False},
    ]


@pytest.fixture
def make_provider():
    """Factory for fake providers: make_provider(tables, failing=...)."""
    return FakeProvider
