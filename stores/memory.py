"""
In-memory store backends, intended for development and tests.

Thread-safe. The order store publishes every write to its subscribers while
still holding its lock, so subscribers see writes in write order.
"""

import threading
import uuid
from typing import Optional
from zoneinfo import ZoneInfo

import structlog

from config import settings
from exceptions import DeadlinePassedError, OrderNotFoundError
from models.basket import Cart
from models.order import OrderStatus, PlacedOrder
from services.basket_service import Clock, utc_now
from services.schedule_service import ScheduleCalculator
from services.subscription_service import Subscription, SubscriptionHub
from stores.base import OrderCallback

logger = structlog.get_logger(__name__)

# (seller_id, pickup date key, order id)
OrderKey = tuple[str, str, str]


class InMemoryOrderStore:
    """
    Order store backed by a dict.

    When a calculator is given, update/cancel also enforce the edit deadline
    the way a server would.
    """

    def __init__(
        self,
        calculator: Optional[ScheduleCalculator] = None,
        clock: Optional[Clock] = None,
        zone: Optional[ZoneInfo] = None,
    ) -> None:
        self._calculator = calculator
        self._clock = clock or utc_now
        self._zone = zone or (calculator.zone if calculator else settings.zone)
        self._orders: dict[OrderKey, PlacedOrder] = {}
        self._keys: dict[str, OrderKey] = {}
        self._lock = threading.RLock()
        self._hub = SubscriptionHub()

    def _key_for(self, order: PlacedOrder) -> OrderKey:
        return order.seller_id, order.pickup_date_key(self._zone), order.id

    def _store(self, order: PlacedOrder) -> None:
        key = self._key_for(order)
        self._orders[key] = order
        self._keys[order.id] = key
        self._hub.publish(order.id, order)

    def _get(self, order_id: str) -> PlacedOrder:
        key = self._keys.get(order_id)
        if key is None:
            raise OrderNotFoundError(order_id)
        return self._orders[key]

    def _require_editable(self, order: PlacedOrder) -> None:
        if not order.status.is_editable:
            raise DeadlinePassedError(order.id, status=order.status.value)
        if self._calculator is not None:
            deadline = self._calculator.edit_deadline(order.pickup_instant)
            if self._clock() > deadline:
                raise DeadlinePassedError(order.id, deadline=deadline, status=order.status.value)

    async def fetch_orders_for_buyer(self, order_ids: list[str]) -> list[PlacedOrder]:
        with self._lock:
            return [self._orders[self._keys[oid]] for oid in order_ids if oid in self._keys]

    async def fetch_order(self, order_id: str) -> Optional[PlacedOrder]:
        with self._lock:
            key = self._keys.get(order_id)
            return self._orders[key] if key else None

    async def place_order(self, order: PlacedOrder) -> PlacedOrder:
        with self._lock:
            placed = order.model_copy(update={
                "id": order.id or str(uuid.uuid4()),
                "status": OrderStatus.PLACED,
                "created_at": self._clock(),
                "updated_at": None,
            })
            self._store(placed)

        logger.info("memory_order_placed", order_id=placed.id, buyer_id=placed.buyer_id)
        return placed

    async def update_order(self, order: PlacedOrder) -> PlacedOrder:
        with self._lock:
            existing = self._get(order.id)
            self._require_editable(existing)
            updated = existing.model_copy(update={
                "lines": tuple(order.lines),
                "message": order.message,
                "updated_at": self._clock(),
            })
            self._store(updated)

        logger.info("memory_order_updated", order_id=updated.id, line_count=len(updated.lines))
        return updated

    async def cancel_order(self, order_id: str) -> PlacedOrder:
        with self._lock:
            existing = self._get(order_id)
            self._require_editable(existing)
            cancelled = existing.model_copy(update={
                "status": OrderStatus.CANCELLED,
                "updated_at": self._clock(),
            })
            self._store(cancelled)

        logger.info("memory_order_cancelled", order_id=order_id)
        return cancelled

    def subscribe(self, order_id: str, callback: OrderCallback) -> Subscription:
        return self._hub.subscribe(order_id, callback)

    def apply_remote_write(self, order: PlacedOrder) -> PlacedOrder:
        """
        Upsert an order without any checks, as another device or the seller would.

        Used to simulate server-side changes (locking, edits elsewhere).
        """
        with self._lock:
            previous = self._keys.get(order.id)
            if previous is not None and previous != self._key_for(order):
                del self._orders[previous]
            self._store(order)
        return order

    @property
    def hub(self) -> SubscriptionHub:
        return self._hub


class InMemoryDraftStore:
    """Draft carts keyed by buyer id."""

    def __init__(self) -> None:
        self._drafts: dict[str, Cart] = {}
        self._lock = threading.Lock()

    async def load_draft(self, buyer_id: str) -> Optional[Cart]:
        with self._lock:
            return self._drafts.get(buyer_id)

    async def save_draft(self, buyer_id: str, cart: Cart) -> None:
        with self._lock:
            self._drafts[buyer_id] = cart
        logger.debug("memory_draft_saved", buyer_id=buyer_id, line_count=cart.item_count)

    async def clear_draft(self, buyer_id: str) -> None:
        with self._lock:
            self._drafts.pop(buyer_id, None)


class InMemoryProfileStore:
    """Placed order ids per buyer, keyed by pickup date key."""

    def __init__(self) -> None:
        self._profiles: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    async def get_placed_order_ids(self, buyer_id: str) -> dict[str, str]:
        with self._lock:
            return dict(self._profiles.get(buyer_id, {}))

    async def add_placed_order(self, buyer_id: str, date_key: str, order_id: str) -> None:
        with self._lock:
            self._profiles.setdefault(buyer_id, {})[date_key] = order_id

    async def remove_placed_order(self, buyer_id: str, order_id: str) -> None:
        with self._lock:
            placed = self._profiles.get(buyer_id, {})
            for date_key in [k for k, v in placed.items() if v == order_id]:
                del placed[date_key]
