"""
Attendance API — Test Configuration (conftest.py)
=================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── clock:         FixedClock pinned to 2024-03-15 09:00 UTC
    ├── memory_store:  Fresh InMemoryRecordStore
    ├── tracker:       AttendanceTracker over memory_store + clock
    ├── app:           Fresh FastAPI app with store/clock overridden
    └── test_client:   HTTPX AsyncClient for API endpoint testing
"""

import os
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional

# Override settings for testing BEFORE any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["STORE_BACKEND"] = "memory"
os.environ["TIMEZONE"] = "UTC"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from attendance_api.clock import get_clock
from attendance_api.dependencies import get_record_store
from attendance_api.services.attendance_tracker import AttendanceTracker
from attendance_api.services.record_store import InMemoryRecordStore


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, current: datetime, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc
        self.current = self.localize(current)

    def now(self) -> datetime:
        return self.current

    def localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def set(self, value: datetime) -> None:
        self.current = self.localize(value)

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 15, 9, 0))


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest.fixture
def tracker(memory_store, clock):
    return AttendanceTracker(store=memory_store, clock=clock)


@pytest.fixture
def app(memory_store, clock):
    """
    A fresh application per test.

    The record store and clock are swapped through dependency_overrides so
    route tests share state with the `memory_store` and `clock` fixtures.
    """
    from attendance_api.main import create_app

    application = create_app()

    async def override_store():
        yield memory_store

    application.dependency_overrides[get_record_store] = override_store
    application.dependency_overrides[get_clock] = lambda: clock
    return application


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def auth_headers(user_id: str = "emp-1", role: str = "employee") -> dict:
    return {"X-User-ID": user_id, "X-User-Role": role}
