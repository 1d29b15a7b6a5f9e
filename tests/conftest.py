"""
Shared test fixtures.

All times are pinned to a fixed week in Europe/Berlin:
Monday 2025-10-13 .. Sunday 2025-10-19, pickup Thursday 2025-10-16,
edit deadline Tuesday 2025-10-14 23:59:59.999.
"""

import sys
from pathlib import Path

# Add project root to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from unittest.mock import patch
from datetime import datetime, timedelta
from typing import Any, Callable, Generator, Optional
from zoneinfo import ZoneInfo

from models.schedule import Weekday, WeeklyCycleConfig
from services.order_lifecycle_service import OrderLifecycleCoordinator
from services.schedule_service import ScheduleCalculator
from stores.memory import InMemoryDraftStore, InMemoryOrderStore, InMemoryProfileStore

from tests.factories import BERLIN, BUYER_ID, MONDAY_10AM, SELLER_ID


class FakeClock:
    """Mutable clock; call it to read the current instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None):
        self.data = data or []
        self.count = len(self.data)


class MockSupabaseQuery:
    """
    Mock Supabase query builder with chainable methods.

    eq/in_ filters are applied to the table's rows, so conditional
    updates behave like the real thing.
    """

    def __init__(self, table: "MockSupabaseTable", operation: str, payload: Any = None):
        self._table = table
        self._operation = operation
        self._payload = payload
        self._filters: list[Callable[[dict], bool]] = []
        self._limit: Optional[int] = None

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matching(self) -> list[dict]:
        return [row for row in self._table.rows if all(f(row) for f in self._filters)]

    def execute(self) -> MockSupabaseResponse:
        self._table.calls.append((self._operation, self._payload))
        if self._table.error is not None:
            raise self._table.error

        if self._operation == "select":
            rows = self._matching()
            if self._limit is not None:
                rows = rows[:self._limit]
            return MockSupabaseResponse([dict(row) for row in rows])

        if self._operation == "insert":
            self._table.rows.append(dict(self._payload))
            return MockSupabaseResponse([dict(self._payload)])

        if self._operation == "upsert":
            key = self._table.key
            self._table.rows[:] = [r for r in self._table.rows if r.get(key) != self._payload.get(key)]
            self._table.rows.append(dict(self._payload))
            return MockSupabaseResponse([dict(self._payload)])

        if self._operation == "update":
            updated = []
            for row in self._matching():
                row.update(self._payload)
                updated.append(dict(row))
            return MockSupabaseResponse(updated)

        removed = self._matching()
        self._table.rows[:] = [r for r in self._table.rows if r not in removed]
        return MockSupabaseResponse(removed)


class MockSupabaseTable:
    """Mock Supabase table holding live rows."""

    def __init__(self, rows: list = None, key: str = "id"):
        self.rows = list(rows or [])
        self.key = key
        self.calls: list[tuple[str, Any]] = []
        self.error: Optional[Exception] = None

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self, "select")

    def insert(self, data):
        return MockSupabaseQuery(self, "insert", data)

    def upsert(self, data):
        return MockSupabaseQuery(self, "upsert", data)

    def update(self, data):
        return MockSupabaseQuery(self, "update", data)

    def delete(self):
        return MockSupabaseQuery(self, "delete")


class MockSupabaseClient:
    """Mock Supabase client."""

    def __init__(self):
        self._tables: dict[str, MockSupabaseTable] = {}

    def set_table_data(self, table_name: str, data: list, key: str = "id"):
        """Configure rows for a table; key is the upsert conflict column."""
        self._tables[table_name] = MockSupabaseTable(data, key)

    def fail_table(self, table_name: str, error: Exception):
        """Make every query on the table raise `error`."""
        self.table(table_name).error = error

    def table(self, name: str) -> MockSupabaseTable:
        if name not in self._tables:
            self._tables[name] = MockSupabaseTable()
        return self._tables[name]


# ===================
# SCHEDULE
# ===================

@pytest.fixture
def zone() -> ZoneInfo:
    return BERLIN


@pytest.fixture
def cycle_config() -> WeeklyCycleConfig:
    """Thursday pickup, Tuesday 23:59 deadline."""
    return WeeklyCycleConfig(
        pickup_weekday=Weekday.THURSDAY,
        deadline_weekday=Weekday.TUESDAY,
        deadline_hour=23,
        deadline_minute=59,
    )


@pytest.fixture
def calculator(cycle_config, zone) -> ScheduleCalculator:
    return ScheduleCalculator(cycle_config, zone)


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting Monday 10:00, before this week's deadline."""
    return FakeClock(MONDAY_10AM)


# ===================
# STORES
# ===================

@pytest.fixture
def order_store(calculator, clock) -> InMemoryOrderStore:
    return InMemoryOrderStore(calculator=calculator, clock=clock)


@pytest.fixture
def draft_store() -> InMemoryDraftStore:
    return InMemoryDraftStore()


@pytest.fixture
def profile_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def coordinator(order_store, draft_store, profile_store, calculator, clock) -> OrderLifecycleCoordinator:
    """Coordinator for BUYER_ID over in-memory stores."""
    return OrderLifecycleCoordinator(
        buyer_id=BUYER_ID,
        order_store=order_store,
        draft_store=draft_store,
        profile_store=profile_store,
        calculator=calculator,
        seller_id=SELLER_ID,
        timeout_seconds=1.0,
        available_dates_count=3,
        clock=clock,
    )


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("orders", [{"id": "1", ...}])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Any store built without an explicit client gets the mock.
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("stores.supabase_store.get_supabase_client", return_value=mock_supabase):
            yield mock_supabase


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def session_registry(order_store, draft_store, profile_store, calculator, clock):
    from config import Settings
    from services.session_service import SessionRegistry

    config = Settings(_env_file=None, available_dates_count=3, seller_id=SELLER_ID)
    return SessionRegistry(order_store, draft_store, profile_store, calculator, clock=clock, config=config)


@pytest.fixture
def test_client(session_registry) -> Generator:
    """
    FastAPI test client wired to in-memory stores and the fake clock.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/api/basket/buyer-1")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app
    from services.session_service import get_session_registry

    app.dependency_overrides[get_session_registry] = lambda: session_registry
    yield TestClient(app)
    app.dependency_overrides.clear()
