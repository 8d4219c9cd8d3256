# ==== SHARED TEST FIXTURES AND CONFIGURATION ==== #

"""
Shared test fixtures for the licensing core.

Services are wired around the in-memory store and cache with a controllable
clock, so workflow, repository and API tests run without PostgreSQL or Redis.
The store contract suite adds a SQLite-backed store on top of these.
"""

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


# ==== FORCE ENVIRONMENT SETUP BEFORE ANY IMPORTS ==== #

# Set environment variables BEFORE importing any package modules
os.environ.update({
    "APP_ENV": "test",
    "LOG_LEVEL": "WARNING",
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "REDIS_URL": "redis://localhost:6379/15",
    "NOTIFICATIONS_ENABLED": "true",
})

from umkm_licensing.dependencies import LicensingServices, build_services
from umkm_licensing.settings import Settings
from umkm_licensing.storage.application_store import InMemoryApplicationStore
from umkm_licensing.storage.cache import InMemoryCache

from tests.factories.doubles import FakeClock, FakeMonotonic, RecordingNotifier


# ==== CLOCK FIXTURES ==== #


@pytest.fixture
def base_time():
    """Fixed base time for workflow tests."""
    return datetime(2025, 3, 3, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(base_time):
    return FakeClock(base_time)


@pytest.fixture
def monotonic():
    return FakeMonotonic()


# ==== SERVICE FIXTURES ==== #


@pytest.fixture
def test_settings():
    return Settings(
        APP_ENV="test",
        REVIEWER_MAX_WORKLOAD=10,
        NOTIFICATIONS_ENABLED=True,
        RELEASE_REVIEWER_ON_REVISION=False,
        KNOWN_REVIEWER_IDS="",
    )


@pytest.fixture
def store():
    return InMemoryApplicationStore()


@pytest.fixture
def cache(monotonic):
    return InMemoryCache(clock=monotonic)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(store, cache, test_settings, clock, notifier) -> LicensingServices:
    return build_services(store, cache, config=test_settings, clock=clock, notifier=notifier)


@pytest.fixture
def repository(services):
    return services.repository


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def assignment(services):
    return services.assignment


# ==== HTTP FIXTURES ==== #


@pytest.fixture
def app(services):
    from umkm_licensing.main import create_app

    return create_app(services=services)


@pytest_asyncio.fixture
async def client(app):
    """HTTP client bound to the ASGI app; lifespan is not run."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
