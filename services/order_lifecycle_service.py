"""
Order lifecycle coordinator — one buyer session's view of its orders.

Decides where the active cart comes from on session start (persisted draft,
upcoming placed order, or nothing) and drives checkout, updates, conflict
resolution and cancellation through the stores.

Every remote call runs under a timeout and surfaces failures as IoError.
Operations are serialized per session; local state is snapshotted first
and restored if the remote part fails or is cancelled, so an operation
either fully commits or leaves the session untouched.
"""

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Awaitable, Optional, TypeVar

import structlog

from config import settings
from exceptions import (
    DeadlinePassedError,
    EmptyCartError,
    InvalidBasketStateError,
    IoError,
    NoPendingConflictError,
    OrderNotFoundError,
    PickupDateUnavailableError,
)
from models.basket import BasketState, Cart, CartLine, SessionSource
from models.merge import MergeConflict, MergePolicy
from models.order import OrderStatus, PlacedOrder
from models.schedule import DeadlineInfo, UrgencyLevel, WindowStatus
from services.basket_service import BasketStateMachine, Clock, utc_now
from services.conflict_service import ConflictResolver
from services.deadline_service import DeadlineClassifier
from services.schedule_service import ScheduleCalculator
from stores.base import DraftStore, OrderStore, ProfileStore, Subscription
from utils.date_utils import format_display_date, format_display_datetime

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CLOSED_STATE = "CLOSED"


class OrderLifecycleCoordinator:
    """
    Per-buyer orchestrator over the basket, the resolver and the stores.

    Not shared between buyers; the session registry owns one per buyer.

    Remote writes to the active order arrive through a store subscription
    and are applied, in delivery order, at the start of the next operation
    (or on refresh()).
    """

    def __init__(
        self,
        buyer_id: str,
        order_store: OrderStore,
        draft_store: DraftStore,
        profile_store: ProfileStore,
        calculator: ScheduleCalculator,
        seller_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        available_dates_count: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        self.buyer_id = buyer_id
        self.seller_id = seller_id or settings.seller_id
        self._orders = order_store
        self._drafts = draft_store
        self._profiles = profile_store
        self._calculator = calculator
        self._clock = clock or utc_now
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.remote_timeout_seconds
        self._dates_count = (
            available_dates_count if available_dates_count is not None
            else settings.available_dates_count
        )

        self.basket = BasketStateMachine(calculator, self._clock)
        self.resolver = ConflictResolver(calculator, self._clock)

        self._lock = asyncio.Lock()
        self._pending_conflict: Optional[MergeConflict] = None
        self._subscription: Optional[Subscription] = None
        self._watched_id: Optional[str] = None
        self._inbox: deque[PlacedOrder] = deque()
        self._started = False
        self._closed = False

    # ===================
    # READS
    # ===================

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cart(self) -> Cart:
        return self.basket.cart

    @property
    def state(self) -> BasketState:
        return self.basket.state

    @property
    def pending_conflict(self) -> Optional[MergeConflict]:
        return self._pending_conflict

    @property
    def has_pending_conflict(self) -> bool:
        return self._pending_conflict is not None

    def window_status(self) -> Optional[WindowStatus]:
        return self.basket.window_status()

    def urgency(self) -> Optional[UrgencyLevel]:
        cycle = self.basket.source_cycle()
        if cycle is None:
            return None
        return DeadlineClassifier.urgency(self._clock(), cycle.deadline_instant)

    def available_pickup_dates(self) -> list[datetime]:
        """Next orderable pickup dates at the current clock."""
        return list(self._calculator.available_pickup_dates(self._dates_count, self._clock()))

    def deadline_info(self) -> Optional[DeadlineInfo]:
        """
        Deadline picture of the active cart.

        The mirrored order's cycle; for drafts the selected date, else the
        first orderable date. None if no date is orderable.
        """
        cycle = self.basket.source_cycle()
        if cycle is None:
            pickup = self.cart.selected_pickup_instant
            if pickup is None:
                available = self.available_pickup_dates()
                if not available:
                    return None
                pickup = available[0]
            cycle = self._calculator.cycle_for(pickup)
        return DeadlineClassifier.describe(self._clock(), cycle)

    # ===================
    # PLUMBING
    # ===================

    async def _remote(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                "remote_call_timed_out",
                operation=operation,
                buyer_id=self.buyer_id,
                timeout_seconds=self._timeout
            )
            raise IoError("store", f"{operation} timed out after {self._timeout}s") from e

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[None]:
        if self._closed:
            raise InvalidBasketStateError(operation, CLOSED_STATE, ["OPEN"])

        async with self._lock:
            self._drain_inbox()
            snapshot = self.basket.snapshot()
            conflict = self._pending_conflict
            watched = self._watched_id
            try:
                yield
            except BaseException as e:
                self.basket.restore(snapshot)
                self._pending_conflict = conflict
                self._follow(watched)
                logger.warning(
                    "operation_rolled_back",
                    operation=operation,
                    buyer_id=self.buyer_id,
                    error_type=type(e).__name__
                )
                raise

    def _watch(self, order: Optional[PlacedOrder]) -> None:
        """Follow remote writes of the active order (or stop following)."""
        self._follow(order.id if order is not None else None)

    def _follow(self, order_id: Optional[str]) -> None:
        if order_id == self._watched_id:
            return
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._watched_id = order_id
        if order_id is not None:
            self._subscription = self._orders.subscribe(order_id, self._inbox.append)

    def _drain_inbox(self) -> None:
        while self._inbox:
            self._apply_remote(self._inbox.popleft())

    def _apply_remote(self, server: PlacedOrder) -> None:
        """
        Reconcile a newer server copy of the active order.

        Without local edits the server copy is adopted; with local edits a
        pending conflict is recorded for the buyer to resolve.
        """
        current = self.basket.source_order
        if current is None or server.id != current.id:
            return
        if current.updated_at and server.updated_at and server.updated_at < current.updated_at:
            return
        if server.lines == current.lines and server.status == current.status:
            return

        if not self.basket.has_changes or not server.status.is_editable:
            if self.basket.has_changes:
                logger.warning(
                    "local_edits_superseded",
                    order_id=server.id,
                    status=server.status.value
                )
            self.basket.load_order(server)
            self._pending_conflict = None
            logger.info("remote_order_adopted", order_id=server.id, status=server.status.value)
            return

        cart = self.basket.cart
        self.basket.mark_synced(server)
        self._pending_conflict = self.resolver.detect_conflict(cart, server)
        logger.info(
            "remote_order_diverged",
            order_id=server.id,
            has_conflict=self._pending_conflict is not None
        )

    async def _fetch_authoritative(self, order_id: str) -> PlacedOrder:
        order = await self._remote("fetch_order", self._orders.fetch_order(order_id))
        if order is None or order.buyer_id != self.buyer_id:
            raise OrderNotFoundError(order_id)
        return order

    def _require_open(self, order: PlacedOrder) -> None:
        """Server-copy check: editable status and deadline not passed."""
        deadline = self._calculator.edit_deadline(order.pickup_instant)
        status = DeadlineClassifier.window_status(self._clock(), deadline, order.pickup_instant)
        if not order.status.is_editable or status != WindowStatus.OPEN:
            logger.warning(
                "order_not_editable",
                order_id=order.id,
                status=order.status.value,
                window=status.value,
                deadline=format_display_datetime(deadline, self._calculator.zone)
            )
            raise DeadlinePassedError(order.id, deadline=deadline, status=order.status.value)

    def _validate_pickup(self, pickup: datetime) -> datetime:
        """Match a requested pickup against the available dates (by local date)."""
        available = self.available_pickup_dates()
        requested = self._calculator.date_key(pickup)
        for candidate in available:
            if self._calculator.date_key(candidate) == requested:
                return candidate
        raise PickupDateUnavailableError(pickup, available)

    async def _persist_draft(self) -> None:
        """Save the cart as the buyer's draft, or clear it when there is nothing to keep."""
        cart = self.basket.cart
        if cart.is_draft:
            keep = not cart.is_empty or cart.selected_pickup_instant is not None
        else:
            keep = self.basket.has_changes

        if keep:
            await self._remote("save_draft", self._drafts.save_draft(self.buyer_id, cart))
        else:
            await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))

    async def _withdraw(self, placed: PlacedOrder, date_key: str) -> None:
        """Undo a placed order whose follow-up writes failed."""
        try:
            await self._remote("cancel_order", self._orders.cancel_order(placed.id))
            await self._remote(
                "remove_placed_order",
                self._profiles.remove_placed_order(self.buyer_id, placed.id)
            )
            logger.warning("placed_order_withdrawn", order_id=placed.id, date_key=date_key)
        except Exception as e:
            logger.error(
                "placed_order_withdraw_failed",
                order_id=placed.id,
                date_key=date_key,
                error=str(e),
                error_type=type(e).__name__
            )

    async def _find_upcoming_order(self) -> Optional[PlacedOrder]:
        """Most recently created active order whose pickup is still ahead."""
        placed = await self._remote(
            "get_placed_order_ids", self._profiles.get_placed_order_ids(self.buyer_id)
        )
        if not placed:
            return None

        orders = await self._remote(
            "fetch_orders_for_buyer", self._orders.fetch_orders_for_buyer(list(placed.values()))
        )
        now = self._clock()
        upcoming = [o for o in orders if o.pickup_instant > now and o.status.is_active]
        return max(upcoming, key=lambda o: o.created_at, default=None)

    # ===================
    # SESSION
    # ===================

    async def start_session(self) -> SessionSource:
        """
        Hydrate the active cart.

        Priority: persisted draft (a fresh draft only if it has lines), then
        the upcoming placed order, then an empty draft.

        Returns:
            Which source hydrated the cart
        """
        async with self._transaction("start_session"):
            source = await self._hydrate()
            self._started = True
            logger.info(
                "session_started",
                buyer_id=self.buyer_id,
                source=source.value,
                state=self.basket.state.value,
                line_count=self.cart.item_count
            )
            return source

    async def _hydrate(self) -> SessionSource:
        self._pending_conflict = None
        draft = await self._remote("load_draft", self._drafts.load_draft(self.buyer_id))

        if draft is not None and draft.source_order_id is None and not draft.is_empty:
            self.basket.load_draft(draft)
            self._watch(None)
            return SessionSource.DRAFT

        if draft is not None and draft.source_order_id is not None:
            order = await self._remote("fetch_order", self._orders.fetch_order(draft.source_order_id))
            if order is None:
                logger.warning("draft_order_missing", order_id=draft.source_order_id)
                await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))
            else:
                self.basket.load_draft(draft, order)
                self._watch(order)
                if self.basket.state == BasketState.EDITING_ORDER:
                    return SessionSource.DRAFT

                logger.warning(
                    "stale_draft_dropped",
                    order_id=order.id,
                    status=order.status.value,
                    line_count=draft.item_count
                )
                await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))
                self.basket.load_order(order)
                return SessionSource.ORDER

        upcoming = await self._find_upcoming_order()
        if upcoming is not None:
            self.basket.load_order(upcoming)
            self._watch(upcoming)
            return SessionSource.ORDER

        self.basket.start_draft()
        self._watch(None)
        return SessionSource.EMPTY

    async def refresh(self) -> Optional[MergeConflict]:
        """
        Re-fetch the active order and reconcile it.

        Returns:
            The pending conflict, if the server copy diverged from local edits
        """
        async with self._transaction("refresh"):
            current = self.basket.source_order
            if current is not None:
                server = await self._remote("fetch_order", self._orders.fetch_order(current.id))
                if server is not None:
                    self._apply_remote(server)
            return self._pending_conflict

    async def close(self) -> None:
        """Tear down the session: stop following remote writes."""
        async with self._lock:
            self._follow(None)
            self._inbox.clear()
            self._closed = True
        logger.info("session_closed", buyer_id=self.buyer_id)

    # ===================
    # LINE ACTIONS
    # ===================

    async def add_or_update_line(self, line: CartLine) -> Cart:
        async with self._transaction("add_or_update_line"):
            self.basket.add_or_update_line(line)
            await self._persist_draft()
            return self.cart

    async def remove_line(self, product_id: str) -> Cart:
        async with self._transaction("remove_line"):
            self.basket.remove_line(product_id)
            await self._persist_draft()
            return self.cart

    async def set_quantity(self, product_id: str, quantity) -> Cart:
        async with self._transaction("set_quantity"):
            self.basket.set_quantity(product_id, quantity)
            await self._persist_draft()
            return self.cart

    async def select_pickup_date(self, pickup: datetime) -> Cart:
        """
        Choose the pickup date for the draft's checkout.

        Raises:
            PickupDateUnavailableError: If the date is not orderable
            InvalidBasketStateError: If the cart mirrors a placed order
        """
        async with self._transaction("select_pickup_date"):
            self.basket.select_pickup_date(self._validate_pickup(pickup))
            await self._persist_draft()
            return self.cart

    async def start_new_draft(self) -> Cart:
        """Drop whatever is active (including unsynced edits) and start an empty draft."""
        async with self._transaction("start_new_draft"):
            self.basket.start_draft()
            await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))
            self._pending_conflict = None
            self._watch(None)
            return self.cart

    # ===================
    # ORDER ACTIONS
    # ===================

    async def checkout(self, pickup: Optional[datetime] = None, message: str = "") -> PlacedOrder:
        """
        Place the draft as an order.

        Args:
            pickup: Pickup date; defaults to the selected one, then the first available
            message: Note for the seller

        Returns:
            The placed order, now loaded as the active cart

        Raises:
            InvalidBasketStateError: If the cart mirrors a placed order
            EmptyCartError: If the cart has no lines
            PickupDateUnavailableError: If the date is not orderable
        """
        async with self._transaction("checkout"):
            state = self.basket.state
            if state not in (BasketState.DRAFT, BasketState.EMPTY):
                raise InvalidBasketStateError("checkout", state.value, [BasketState.DRAFT.value])

            cart = self.cart
            if cart.is_empty:
                raise EmptyCartError()

            requested = pickup or cart.selected_pickup_instant
            if requested is None:
                available = self.available_pickup_dates()
                if not available:
                    raise PickupDateUnavailableError(self._clock(), available)
                requested = available[0]
            pickup_instant = self._validate_pickup(requested)

            order = PlacedOrder(
                buyer_id=self.buyer_id,
                seller_id=self.seller_id,
                pickup_instant=pickup_instant,
                status=OrderStatus.PLACED,
                lines=cart.lines,
                created_at=self._clock(),
                message=message,
            )
            placed = await self._remote("place_order", self._orders.place_order(order))

            date_key = self._calculator.date_key(placed.pickup_instant)
            try:
                await self._remote(
                    "add_placed_order",
                    self._profiles.add_placed_order(self.buyer_id, date_key, placed.id)
                )
                await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))
            except BaseException:
                await self._withdraw(placed, date_key)
                raise

            self.basket.load_order(placed)
            self._watch(placed)

            logger.info(
                "order_placed",
                buyer_id=self.buyer_id,
                order_id=placed.id,
                pickup=format_display_date(placed.pickup_instant, self._calculator.zone),
                line_count=len(placed.lines),
                total=str(placed.total)
            )
            return placed

    async def enable_editing(self) -> BasketState:
        """
        Re-check with the server that the active order may still be edited.

        Raises:
            InvalidBasketStateError: If no order is active
            DeadlinePassedError: If the server copy is no longer editable
        """
        async with self._transaction("enable_editing"):
            current = self.basket.source_order
            if current is None:
                raise InvalidBasketStateError(
                    "enable editing",
                    self.basket.state.value,
                    [BasketState.EDITING_ORDER.value, BasketState.LOCKED_VIEW.value]
                )

            server = await self._fetch_authoritative(current.id)
            self._require_open(server)
            if not self.basket.has_changes:
                self.basket.load_order(server)

            logger.info("order_editing_enabled", order_id=server.id)
            return self.basket.state

    async def save_changes(self) -> PlacedOrder:
        """
        Write the edited lines back to the active order.

        Status and deadline are re-checked against the server copy.

        Raises:
            InvalidBasketStateError: If the cart is not an order edit
            DeadlinePassedError: If the order can no longer be edited
            EmptyCartError: If every line was removed (cancel instead)
        """
        async with self._transaction("save_changes"):
            current = self.basket.source_order
            if current is None:
                raise InvalidBasketStateError(
                    "save changes", self.basket.state.value, [BasketState.EDITING_ORDER.value]
                )

            server = await self._fetch_authoritative(current.id)
            self._require_open(server)

            cart = self.cart
            if cart.is_empty:
                raise EmptyCartError()

            updated = await self._remote(
                "update_order",
                self._orders.update_order(server.model_copy(update={"lines": cart.lines}))
            )
            await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))

            self.basket.mark_synced(updated)
            self._pending_conflict = None

            logger.info(
                "order_updated",
                buyer_id=self.buyer_id,
                order_id=updated.id,
                line_count=len(updated.lines),
                total=str(updated.total)
            )
            return updated

    async def load_order_for_edit(self, order_id: str) -> Optional[MergeConflict]:
        """
        Make a placed order the active cart.

        A fresh unsynced draft is kept in the draft store first. Unsynced
        edits of the same order are compared with the server copy; if they
        differ, the conflict is returned (and kept pending) instead of
        overwriting them.

        Returns:
            The conflict to resolve, or None if the order was loaded cleanly
        """
        async with self._transaction("load_order_for_edit"):
            server = await self._fetch_authoritative(order_id)
            cart = self.cart

            if cart.is_draft and not cart.is_empty:
                await self._remote("save_draft", self._drafts.save_draft(self.buyer_id, cart))
                logger.info("draft_kept", buyer_id=self.buyer_id, line_count=cart.item_count)

            local: Optional[Cart] = None
            if cart.source_order_id == order_id and self.basket.has_changes:
                local = cart
            else:
                persisted = await self._remote("load_draft", self._drafts.load_draft(self.buyer_id))
                if persisted is not None and persisted.source_order_id == order_id:
                    local = persisted

            self._pending_conflict = None
            conflict = self.resolver.detect_conflict(local, server) if local is not None else None

            if conflict is not None and server.status.is_editable and self._calculator.can_edit(
                server.pickup_instant, self._clock()
            ):
                self.basket.load_draft(local, server)
                self._pending_conflict = conflict
                self._watch(server)
                return conflict

            if local is not None:
                if conflict is not None:
                    logger.warning("stale_draft_dropped", order_id=order_id, line_count=local.item_count)
                await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))

            self.basket.load_order(server)
            self._watch(server)
            return None

    async def resolve_conflict(self, policy: MergePolicy) -> PlacedOrder:
        """
        Resolve the pending conflict and write the result back to the order.

        Raises:
            NoPendingConflictError: If nothing is pending
            IncompleteResolutionError: MANUAL policy missing a product
            DeadlinePassedError: If the order can no longer be edited
            EmptyCartError: If the resolution removed every line
        """
        async with self._transaction("resolve_conflict"):
            conflict = self._pending_conflict
            if conflict is None:
                raise NoPendingConflictError()

            merged = self.resolver.resolve(conflict, policy)
            if merged.is_empty:
                raise EmptyCartError()

            server = await self._fetch_authoritative(conflict.remote_order.id)
            self._require_open(server)

            updated = await self._remote(
                "update_order",
                self._orders.update_order(server.model_copy(update={"lines": merged.lines}))
            )
            await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))

            self.basket.load_order(updated)
            self._pending_conflict = None
            self._watch(updated)

            logger.info(
                "conflict_written_back",
                order_id=updated.id,
                strategy=policy.strategy.value,
                line_count=len(updated.lines)
            )
            return updated

    async def cancel_order(self) -> PlacedOrder:
        """
        Cancel the active order while its window is open.

        Removes the order from the buyer's profile and starts an empty draft.
        """
        async with self._transaction("cancel_order"):
            current = self.basket.source_order
            if current is None:
                raise InvalidBasketStateError(
                    "cancel", self.basket.state.value, [BasketState.EDITING_ORDER.value]
                )

            server = await self._fetch_authoritative(current.id)
            self._require_open(server)

            cancelled = await self._remote("cancel_order", self._orders.cancel_order(server.id))
            await self._remote(
                "remove_placed_order",
                self._profiles.remove_placed_order(self.buyer_id, server.id)
            )
            await self._remote("clear_draft", self._drafts.clear_draft(self.buyer_id))

            self.basket.start_draft()
            self._pending_conflict = None
            self._watch(None)

            logger.info("order_cancelled", buyer_id=self.buyer_id, order_id=server.id)
            return cancelled

    async def reorder(self, pickup: Optional[datetime] = None) -> Cart:
        """
        Copy the active cart's lines into a fresh draft for another pickup date.

        Works from any state, including a locked view of a past order.
        """
        async with self._transaction("reorder"):
            lines = self.cart.lines
            if not lines:
                raise EmptyCartError()

            if pickup is None:
                available = self.available_pickup_dates()
                if not available:
                    raise PickupDateUnavailableError(self._clock(), available)
                pickup = available[0]
            pickup_instant = self._validate_pickup(pickup)

            source_order_id = self.cart.source_order_id
            self.basket.start_draft()
            self.basket.replace_lines(lines)
            self.basket.select_pickup_date(pickup_instant)
            self._pending_conflict = None
            await self._persist_draft()
            self._watch(None)

            logger.info(
                "order_copied_to_draft",
                buyer_id=self.buyer_id,
                source_order_id=source_order_id,
                line_count=len(lines)
            )
            return self.cart
