"""
Session registry — one OrderLifecycleCoordinator per buyer.

Stores are chosen from settings (memory or supabase) when the registry is
built; coordinators are created on first use and started lazily.
"""

import threading
from typing import Optional

import structlog

from config import Settings, settings as default_settings
from services.basket_service import Clock
from services.order_lifecycle_service import OrderLifecycleCoordinator
from services.schedule_service import (
    ScheduleCalculator,
    build_schedule_calculator,
    get_schedule_calculator,
)
from stores.base import DraftStore, OrderStore, ProfileStore

logger = structlog.get_logger(__name__)


def build_stores(
    config: Optional[Settings] = None,
    calculator: Optional[ScheduleCalculator] = None,
) -> tuple[OrderStore, DraftStore, ProfileStore]:
    """
    Instantiate the configured store backends.

    Raises:
        ValueError: Unknown backend name
    """
    config = config or default_settings
    backend = config.store_backend.lower()

    if backend == "memory":
        from stores.memory import InMemoryDraftStore, InMemoryOrderStore, InMemoryProfileStore

        logger.info("using_memory_stores")
        return (
            InMemoryOrderStore(calculator=calculator),
            InMemoryDraftStore(),
            InMemoryProfileStore(),
        )

    if backend == "supabase":
        from stores.supabase_store import (
            SupabaseDraftStore,
            SupabaseOrderStore,
            SupabaseProfileStore,
        )

        # Stores share the cached client from get_supabase_client()
        logger.info("using_supabase_stores")
        return (
            SupabaseOrderStore(calculator=calculator),
            SupabaseDraftStore(),
            SupabaseProfileStore(),
        )

    raise ValueError(f"Unknown store backend '{backend}'")


class SessionRegistry:
    """Owns the per-buyer coordinators of this process."""

    def __init__(
        self,
        order_store: OrderStore,
        draft_store: DraftStore,
        profile_store: ProfileStore,
        calculator: ScheduleCalculator,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
    ):
        self.order_store = order_store
        self.draft_store = draft_store
        self.profile_store = profile_store
        self.calculator = calculator
        self._clock = clock
        self._config = config or default_settings
        self._sessions: dict[str, OrderLifecycleCoordinator] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, buyer_id: str) -> Optional[OrderLifecycleCoordinator]:
        return self._sessions.get(buyer_id)

    def coordinator_for(self, buyer_id: str) -> OrderLifecycleCoordinator:
        """Get or create (but not start) the buyer's coordinator."""
        with self._lock:
            coordinator = self._sessions.get(buyer_id)
            if coordinator is None or coordinator.closed:
                coordinator = OrderLifecycleCoordinator(
                    buyer_id=buyer_id,
                    order_store=self.order_store,
                    draft_store=self.draft_store,
                    profile_store=self.profile_store,
                    calculator=self.calculator,
                    seller_id=self._config.seller_id,
                    timeout_seconds=self._config.remote_timeout_seconds,
                    available_dates_count=self._config.available_dates_count,
                    clock=self._clock,
                )
                self._sessions[buyer_id] = coordinator
                logger.debug("session_created", buyer_id=buyer_id)
            return coordinator

    async def acquire(self, buyer_id: str) -> OrderLifecycleCoordinator:
        """Coordinator for the buyer, hydrated from the stores on first use."""
        coordinator = self.coordinator_for(buyer_id)
        if not coordinator.started:
            await coordinator.start_session()
        return coordinator

    async def close(self, buyer_id: str) -> bool:
        """Tear down one buyer's session. Returns False if there was none."""
        with self._lock:
            coordinator = self._sessions.pop(buyer_id, None)
        if coordinator is None:
            return False
        await coordinator.close()
        return True

    async def close_all(self) -> None:
        with self._lock:
            coordinators = list(self._sessions.values())
            self._sessions.clear()
        for coordinator in coordinators:
            await coordinator.close()
        logger.info("sessions_closed", count=len(coordinators))


def build_session_registry(
    config: Optional[Settings] = None,
    clock: Optional[Clock] = None,
) -> SessionRegistry:
    """Registry wired to the configured cycle and store backend."""
    if config is None:
        config = default_settings
        calculator = get_schedule_calculator()
    else:
        calculator = build_schedule_calculator(config.cycle_config, config.zone)
    order_store, draft_store, profile_store = build_stores(config, calculator)
    return SessionRegistry(
        order_store,
        draft_store,
        profile_store,
        calculator,
        clock=clock,
        config=config,
    )


# Singleton instance
_session_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Get or create the process-wide registry."""
    global _session_registry
    if _session_registry is None:
        _session_registry = build_session_registry()
    return _session_registry


def reset_session_registry() -> None:
    """Forget the registry (tests, config reloads)."""
    global _session_registry
    _session_registry = None
