"""
Unit tests for the session registry and store wiring.
"""

import asyncio
import pytest

from config import Settings
from services.session_service import (
    SessionRegistry,
    build_session_registry,
    build_stores,
    get_session_registry,
    reset_session_registry,
)
from services.schedule_service import get_schedule_calculator
from stores.memory import InMemoryDraftStore, InMemoryOrderStore, InMemoryProfileStore
from stores.supabase_store import SupabaseOrderStore
from models.basket import BasketState
from tests.factories import CartFactory, CartLineFactory


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestBuildStores:
    """Tests for build_stores()."""

    def test_memory_backend(self, calculator):
        order_store, draft_store, profile_store = build_stores(make_settings(), calculator)

        assert isinstance(order_store, InMemoryOrderStore)
        assert isinstance(draft_store, InMemoryDraftStore)
        assert isinstance(profile_store, InMemoryProfileStore)

    def test_supabase_backend(self, mock_db, calculator):
        order_store, _, _ = build_stores(make_settings(store_backend="supabase"), calculator)
        assert isinstance(order_store, SupabaseOrderStore)

    def test_unknown_backend(self, calculator):
        config = make_settings().model_copy(update={"store_backend": "redis"})
        with pytest.raises(ValueError):
            build_stores(config, calculator)

    def test_build_registry_uses_config(self):
        registry = build_session_registry(make_settings(available_dates_count=2, seller_id="farm-7"))
        coordinator = registry.coordinator_for("buyer-1")

        assert coordinator.seller_id == "farm-7"
        assert len(coordinator.available_pickup_dates()) == 2


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def test_one_coordinator_per_buyer(self, session_registry):
        first = session_registry.coordinator_for("buyer-1")

        assert session_registry.coordinator_for("buyer-1") is first
        assert session_registry.coordinator_for("buyer-2") is not first
        assert len(session_registry) == 2

    def test_acquire_starts_once(self, session_registry, draft_store):
        asyncio.run(draft_store.save_draft("buyer-1", CartFactory.draft([CartLineFactory.create()])))

        coordinator = asyncio.run(session_registry.acquire("buyer-1"))
        assert coordinator.started is True
        assert coordinator.state == BasketState.DRAFT

        # A later draft in the store is not picked up without a new session
        asyncio.run(draft_store.save_draft("buyer-1", CartFactory.draft([])))
        again = asyncio.run(session_registry.acquire("buyer-1"))
        assert again is coordinator
        assert again.cart.item_count == 1

    def test_close(self, session_registry):
        coordinator = asyncio.run(session_registry.acquire("buyer-1"))

        assert asyncio.run(session_registry.close("buyer-1")) is True
        assert coordinator.closed is True
        assert session_registry.get("buyer-1") is None
        assert asyncio.run(session_registry.close("buyer-1")) is False

    def test_closed_coordinator_replaced(self, session_registry):
        coordinator = session_registry.coordinator_for("buyer-1")
        asyncio.run(coordinator.close())

        assert session_registry.coordinator_for("buyer-1") is not coordinator

    def test_close_all(self, order_store, draft_store, profile_store, calculator):
        registry = SessionRegistry(order_store, draft_store, profile_store, calculator)
        coordinators = [registry.coordinator_for(b) for b in ("a", "b")]

        asyncio.run(registry.close_all())

        assert len(registry) == 0
        assert all(c.closed for c in coordinators)


def test_registry_singleton():
    reset_session_registry()
    first = get_session_registry()

    assert get_session_registry() is first
    assert first.calculator is get_schedule_calculator()

    reset_session_registry()
    assert get_session_registry() is not first
    reset_session_registry()
