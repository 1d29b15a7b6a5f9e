"""
Supabase store backends.

Tables:
- orders: one row per placed order (seller_id, pickup_date_key, id, lines jsonb, ...)
- buyer_drafts: one draft cart (jsonb) per buyer
- buyer_profiles: placed_order_ids (jsonb map yyyyMMdd -> order id) per buyer

The Supabase client is synchronous; every call runs in a worker thread via
asyncio.to_thread. Failures surface as IoError, retries are left to callers
of the store layer.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar
from zoneinfo import ZoneInfo

import structlog
from supabase import Client

from config import get_supabase_client, settings
from exceptions import AppError, DeadlinePassedError, IoError, OrderNotFoundError
from models.basket import Cart
from models.order import OrderStatus, PlacedOrder
from services.basket_service import Clock, utc_now
from services.schedule_service import ScheduleCalculator
from services.subscription_service import Subscription, SubscriptionHub
from stores.base import OrderCallback

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SupabaseStoreBase:
    """Shared client handling and error mapping."""

    table: str = ""

    def __init__(self, client: Optional[Client] = None):
        self.db = client or get_supabase_client()

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._guarded, operation, fn, *args)

    def _guarded(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except AppError:
            raise
        except Exception as e:
            logger.error(
                "supabase_operation_failed",
                table=self.table,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__
            )
            raise IoError("supabase", f"{operation} on {self.table} failed: {e}") from e


class SupabaseOrderStore(SupabaseStoreBase):
    """
    Orders table.

    Subscribers are notified of writes made through this store instance;
    changes made elsewhere are picked up by re-fetching.
    """

    table = "orders"

    def __init__(
        self,
        client: Optional[Client] = None,
        calculator: Optional[ScheduleCalculator] = None,
        clock: Optional[Clock] = None,
        zone: Optional[ZoneInfo] = None,
    ):
        super().__init__(client)
        self._calculator = calculator
        self._clock = clock or utc_now
        self._zone = zone or (calculator.zone if calculator else settings.zone)
        self._hub = SubscriptionHub()

    # ===================
    # ROW MAPPING
    # ===================

    def _to_row(self, order: PlacedOrder) -> dict:
        row = order.model_dump(mode="json")
        row["pickup_date_key"] = order.pickup_date_key(self._zone)
        return row

    @staticmethod
    def _from_row(row: dict) -> PlacedOrder:
        return PlacedOrder.model_validate(row)

    # ===================
    # READ OPERATIONS
    # ===================

    async def fetch_orders_for_buyer(self, order_ids: list[str]) -> list[PlacedOrder]:
        if not order_ids:
            return []
        return await self._call("fetch_orders", self._fetch_orders_sync, order_ids)

    def _fetch_orders_sync(self, order_ids: list[str]) -> list[PlacedOrder]:
        result = self.db.table(self.table).select("*").in_("id", order_ids).execute()
        by_id = {row["id"]: self._from_row(row) for row in result.data or []}

        logger.debug("orders_fetched", requested=len(order_ids), found=len(by_id))
        return [by_id[oid] for oid in order_ids if oid in by_id]

    async def fetch_order(self, order_id: str) -> Optional[PlacedOrder]:
        return await self._call("fetch_order", self._fetch_order_sync, order_id)

    def _fetch_order_sync(self, order_id: str) -> Optional[PlacedOrder]:
        result = self.db.table(self.table).select("*").eq("id", order_id).limit(1).execute()
        if not result.data:
            return None
        return self._from_row(result.data[0])

    # ===================
    # WRITE OPERATIONS
    # ===================

    async def place_order(self, order: PlacedOrder) -> PlacedOrder:
        placed = await self._call("place_order", self._place_order_sync, order)
        self._hub.publish(placed.id, placed)
        return placed

    def _place_order_sync(self, order: PlacedOrder) -> PlacedOrder:
        placed = order.model_copy(update={
            "id": order.id or str(uuid.uuid4()),
            "status": OrderStatus.PLACED,
            "created_at": self._clock(),
            "updated_at": None,
        })
        result = self.db.table(self.table).insert(self._to_row(placed)).execute()

        logger.info("order_row_inserted", order_id=placed.id, buyer_id=placed.buyer_id)
        return self._from_row(result.data[0]) if result.data else placed

    async def update_order(self, order: PlacedOrder) -> PlacedOrder:
        updated = await self._call("update_order", self._update_order_sync, order)
        self._hub.publish(updated.id, updated)
        return updated

    def _update_order_sync(self, order: PlacedOrder) -> PlacedOrder:
        existing = self._fetch_order_sync(order.id)
        if existing is None:
            raise OrderNotFoundError(order.id)
        self._require_editable(existing)

        changes = {
            "lines": [line.model_dump(mode="json") for line in order.lines],
            "message": order.message,
            "updated_at": self._clock().isoformat(),
        }
        # Conditional write: only rows still PLACED are updated
        result = (
            self.db.table(self.table)
            .update(changes)
            .eq("id", order.id)
            .eq("status", OrderStatus.PLACED.value)
            .execute()
        )
        if not result.data:
            raise DeadlinePassedError(order.id, status=existing.status.value)

        logger.info("order_row_updated", order_id=order.id, line_count=len(order.lines))
        return self._from_row(result.data[0])

    async def cancel_order(self, order_id: str) -> PlacedOrder:
        cancelled = await self._call("cancel_order", self._cancel_order_sync, order_id)
        self._hub.publish(cancelled.id, cancelled)
        return cancelled

    def _cancel_order_sync(self, order_id: str) -> PlacedOrder:
        existing = self._fetch_order_sync(order_id)
        if existing is None:
            raise OrderNotFoundError(order_id)
        self._require_editable(existing)

        result = (
            self.db.table(self.table)
            .update({
                "status": OrderStatus.CANCELLED.value,
                "updated_at": self._clock().isoformat(),
            })
            .eq("id", order_id)
            .eq("status", OrderStatus.PLACED.value)
            .execute()
        )
        if not result.data:
            raise DeadlinePassedError(order_id, status=existing.status.value)

        logger.info("order_row_cancelled", order_id=order_id)
        return self._from_row(result.data[0])

    def _require_editable(self, order: PlacedOrder) -> None:
        if not order.status.is_editable:
            raise DeadlinePassedError(order.id, status=order.status.value)
        if self._calculator is not None:
            deadline = self._calculator.edit_deadline(order.pickup_instant)
            if self._clock() > deadline:
                raise DeadlinePassedError(order.id, deadline=deadline, status=order.status.value)

    def subscribe(self, order_id: str, callback: OrderCallback) -> Subscription:
        return self._hub.subscribe(order_id, callback)


class SupabaseDraftStore(SupabaseStoreBase):
    """buyer_drafts table."""

    table = "buyer_drafts"

    async def load_draft(self, buyer_id: str) -> Optional[Cart]:
        return await self._call("load_draft", self._load_draft_sync, buyer_id)

    def _load_draft_sync(self, buyer_id: str) -> Optional[Cart]:
        result = self.db.table(self.table).select("*").eq("buyer_id", buyer_id).limit(1).execute()
        if not result.data or not result.data[0].get("cart"):
            return None
        return Cart.model_validate(result.data[0]["cart"])

    async def save_draft(self, buyer_id: str, cart: Cart) -> None:
        await self._call("save_draft", self._save_draft_sync, buyer_id, cart)

    def _save_draft_sync(self, buyer_id: str, cart: Cart) -> None:
        self.db.table(self.table).upsert({
            "buyer_id": buyer_id,
            "cart": cart.model_dump(mode="json"),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).execute()
        logger.debug("draft_row_saved", buyer_id=buyer_id, line_count=cart.item_count)

    async def clear_draft(self, buyer_id: str) -> None:
        await self._call("clear_draft", self._clear_draft_sync, buyer_id)

    def _clear_draft_sync(self, buyer_id: str) -> None:
        self.db.table(self.table).delete().eq("buyer_id", buyer_id).execute()
        logger.debug("draft_row_cleared", buyer_id=buyer_id)


class SupabaseProfileStore(SupabaseStoreBase):
    """buyer_profiles table."""

    table = "buyer_profiles"

    async def get_placed_order_ids(self, buyer_id: str) -> dict[str, str]:
        return await self._call("get_placed_order_ids", self._get_ids_sync, buyer_id)

    def _get_ids_sync(self, buyer_id: str) -> dict[str, str]:
        result = (
            self.db.table(self.table)
            .select("placed_order_ids")
            .eq("buyer_id", buyer_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return {}
        return dict(result.data[0].get("placed_order_ids") or {})

    def _write_ids_sync(self, buyer_id: str, placed: dict[str, str]) -> None:
        self.db.table(self.table).upsert({
            "buyer_id": buyer_id,
            "placed_order_ids": placed,
        }).execute()

    async def add_placed_order(self, buyer_id: str, date_key: str, order_id: str) -> None:
        await self._call("add_placed_order", self._add_sync, buyer_id, date_key, order_id)

    def _add_sync(self, buyer_id: str, date_key: str, order_id: str) -> None:
        placed = self._get_ids_sync(buyer_id)
        placed[date_key] = order_id
        self._write_ids_sync(buyer_id, placed)
        logger.info("profile_order_added", buyer_id=buyer_id, date_key=date_key, order_id=order_id)

    async def remove_placed_order(self, buyer_id: str, order_id: str) -> None:
        await self._call("remove_placed_order", self._remove_sync, buyer_id, order_id)

    def _remove_sync(self, buyer_id: str, order_id: str) -> None:
        placed = self._get_ids_sync(buyer_id)
        remaining = {k: v for k, v in placed.items() if v != order_id}
        if remaining != placed:
            self._write_ids_sync(buyer_id, remaining)
            logger.info("profile_order_removed", buyer_id=buyer_id, order_id=order_id)
