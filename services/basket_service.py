"""
Basket state machine — owns the active cart of one buyer session.

States:
- EMPTY: nothing started
- DRAFT: fresh cart, not tied to a placed order (always editable)
- EDITING_ORDER: mirrors a placed order whose window is OPEN
- LOCKED_VIEW: mirrors a placed order past its deadline (read-only)

The state of an order-backed cart is re-derived from the clock on every read,
so a cart loaded while OPEN turns into LOCKED_VIEW once the deadline passes.
Carts are immutable snapshots; every mutation swaps in a new Cart under a
lock, so concurrent readers always see a consistent cart.
"""

import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional, Union

import structlog

from exceptions import CartLineNotFoundError, InvalidBasketStateError, NotEditableError
from models.base import ValueSchema
from models.basket import BasketState, Cart, CartLine
from models.order import PlacedOrder
from models.schedule import PickupCycle, WindowStatus
from services.deadline_service import DeadlineClassifier
from services.schedule_service import ScheduleCalculator

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def line_quantities(lines: Iterable[CartLine]) -> dict[str, Decimal]:
    """Map product_id -> quantity, the part of a line set that matters for change detection."""
    return {line.product_id: line.quantity for line in lines}


class BasketSnapshot(ValueSchema):
    """Complete machine state, used to roll back a mutation that failed to persist."""

    cart: Cart
    source_order: Optional[PlacedOrder] = None
    started: bool = False
    synced_lines: tuple[CartLine, ...] = ()


class BasketStateMachine:
    """
    Cart state machine for one session.

    Mutations are serialized with a re-entrant lock (at most one in flight);
    reads return immutable snapshots and never block on each other.
    """

    def __init__(self, calculator: ScheduleCalculator, clock: Optional[Clock] = None):
        self._calculator = calculator
        self._clock = clock or utc_now
        self._lock = threading.RLock()

        self._cart = Cart(last_modified=self._clock())
        self._source_order: Optional[PlacedOrder] = None
        self._started = False
        # Lines as last read from / written to the store
        self._synced_lines: tuple[CartLine, ...] = ()

    # ===================
    # READS
    # ===================

    @property
    def cart(self) -> Cart:
        return self._cart

    @property
    def total(self) -> Decimal:
        return self._cart.total

    @property
    def source_order(self) -> Optional[PlacedOrder]:
        return self._source_order

    @property
    def state(self) -> BasketState:
        order = self._source_order
        if order is not None:
            if self._order_editable(order):
                return BasketState.EDITING_ORDER
            return BasketState.LOCKED_VIEW
        if self._started:
            return BasketState.DRAFT
        return BasketState.EMPTY

    @property
    def is_editable(self) -> bool:
        return self.state != BasketState.LOCKED_VIEW

    @property
    def has_changes(self) -> bool:
        """
        True if the cart holds edits the store has not seen.

        A non-empty fresh draft always counts as changed.
        """
        cart = self._cart
        if self._source_order is None:
            return not cart.is_empty
        return line_quantities(cart.lines) != line_quantities(self._synced_lines)

    def source_cycle(self) -> Optional[PickupCycle]:
        """Pickup cycle of the order this cart mirrors, if any."""
        order = self._source_order
        if order is None:
            return None
        return self._calculator.cycle_for(order.pickup_instant)

    def window_status(self) -> Optional[WindowStatus]:
        """Window status of the mirrored order at the current clock, if any."""
        cycle = self.source_cycle()
        if cycle is None:
            return None
        return DeadlineClassifier.window_status(
            self._clock(), cycle.deadline_instant, cycle.pickup_instant
        )

    def _order_editable(self, order: PlacedOrder) -> bool:
        if not order.status.is_editable:
            return False
        cycle = self._calculator.cycle_for(order.pickup_instant)
        status = DeadlineClassifier.window_status(
            self._clock(), cycle.deadline_instant, cycle.pickup_instant
        )
        return status == WindowStatus.OPEN

    # ===================
    # TRANSITIONS
    # ===================

    def start_draft(self) -> BasketState:
        """Any state -> DRAFT with no lines."""
        with self._lock:
            self._cart = Cart(last_modified=self._clock())
            self._source_order = None
            self._started = True
            self._synced_lines = ()
            logger.debug("basket_draft_started")
            return self.state

    def load_order(self, order: PlacedOrder) -> BasketState:
        """
        Any state -> EDITING_ORDER or LOCKED_VIEW, mirroring `order`.

        Args:
            order: Placed order (server copy)

        Returns:
            Resulting state
        """
        with self._lock:
            self._cart = Cart(
                lines=tuple(order.lines),
                source_order_id=order.id,
                source_pickup_date_key=self._calculator.date_key(order.pickup_instant),
                last_modified=self._clock(),
            )
            self._source_order = order
            self._started = True
            self._synced_lines = tuple(order.lines)
            state = self.state
            logger.info(
                "basket_order_loaded",
                order_id=order.id,
                line_count=len(order.lines),
                state=state.value,
            )
            return state

    def load_draft(self, cart: Cart, order: Optional[PlacedOrder] = None) -> BasketState:
        """
        Hydrate a persisted draft.

        A draft that edits a placed order needs that order (server copy) to
        know whether it is still editable.

        Raises:
            ValueError: If the draft's lineage and `order` do not match
        """
        if cart.source_order_id is not None and (order is None or order.id != cart.source_order_id):
            raise ValueError(
                f"Draft references order {cart.source_order_id!r} but "
                f"{order.id if order else None!r} was supplied"
            )
        if cart.source_order_id is None and order is not None:
            raise ValueError("A fresh draft cannot be bound to an order")

        with self._lock:
            self._cart = cart
            self._source_order = order
            self._started = True
            self._synced_lines = tuple(order.lines) if order else ()
            state = self.state
            logger.info(
                "basket_draft_loaded",
                source_order_id=cart.source_order_id,
                line_count=cart.item_count,
                state=state.value,
            )
            return state

    def clear(self) -> BasketState:
        """Any state -> EMPTY."""
        with self._lock:
            self._cart = Cart(last_modified=self._clock())
            self._source_order = None
            self._started = False
            self._synced_lines = ()
            logger.debug("basket_cleared")
            return self.state

    # ===================
    # MUTATIONS
    # ===================

    def _require_editable(self, operation: str) -> None:
        state = self.state
        if state == BasketState.LOCKED_VIEW:
            order_id = self._source_order.id if self._source_order else None
            logger.warning("basket_mutation_rejected", operation=operation, order_id=order_id)
            raise NotEditableError(state.value, order_id)
        if state == BasketState.EMPTY:
            # First line of an empty session starts a draft
            self._started = True

    def _commit(self, lines: Iterable[CartLine], **changes) -> Cart:
        self._cart = self._cart.model_copy(
            update={"lines": tuple(lines), "last_modified": self._clock(), **changes}
        )
        return self._cart

    def add_or_update_line(self, line: CartLine) -> Cart:
        """
        Add a product, or replace the existing line of the same product.

        Raises:
            NotEditableError: In LOCKED_VIEW
        """
        with self._lock:
            self._require_editable("add_or_update_line")
            lines = list(self._cart.lines)
            for index, existing in enumerate(lines):
                if existing.product_id == line.product_id:
                    lines[index] = line
                    break
            else:
                lines.append(line)

            logger.debug("basket_line_set", product_id=line.product_id, quantity=str(line.quantity))
            return self._commit(lines)

    def remove_line(self, product_id: str) -> Cart:
        """
        Remove a product.

        Raises:
            NotEditableError: In LOCKED_VIEW
            CartLineNotFoundError: If the product is not in the cart
        """
        with self._lock:
            self._require_editable("remove_line")
            if self._cart.find_line(product_id) is None:
                raise CartLineNotFoundError(product_id)

            logger.debug("basket_line_removed", product_id=product_id)
            return self._commit(line for line in self._cart.lines if line.product_id != product_id)

    def set_quantity(self, product_id: str, quantity: Union[Decimal, int, float, str]) -> Cart:
        """
        Set a line's quantity; zero or less removes the line.

        Raises:
            NotEditableError: In LOCKED_VIEW
            CartLineNotFoundError: If the product is not in the cart
        """
        quantity = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
        if quantity <= 0:
            return self.remove_line(product_id)

        with self._lock:
            self._require_editable("set_quantity")
            if self._cart.find_line(product_id) is None:
                raise CartLineNotFoundError(product_id)

            lines = [
                line.model_copy(update={"quantity": quantity}) if line.product_id == product_id else line
                for line in self._cart.lines
            ]
            logger.debug("basket_quantity_set", product_id=product_id, quantity=str(quantity))
            return self._commit(lines)

    def replace_lines(self, lines: Iterable[CartLine]) -> Cart:
        """
        Replace all lines at once (merge results, reorders).

        Raises:
            NotEditableError: In LOCKED_VIEW
        """
        with self._lock:
            self._require_editable("replace_lines")
            return self._commit(lines)

    def select_pickup_date(self, pickup: datetime) -> Cart:
        """
        Remember the pickup date chosen for a draft's checkout.

        Date validity is the coordinator's concern; this only records it.

        Raises:
            InvalidBasketStateError: If the cart mirrors a placed order
        """
        with self._lock:
            state = self.state
            if state not in (BasketState.EMPTY, BasketState.DRAFT):
                raise InvalidBasketStateError(
                    "select a pickup date", state.value, [BasketState.DRAFT.value]
                )
            self._started = True
            return self._commit(self._cart.lines, selected_pickup_instant=pickup)

    # ===================
    # SYNC BOOKKEEPING
    # ===================

    def mark_synced(self, order: PlacedOrder) -> BasketState:
        """
        Record that `order` is now the server copy of this cart.

        Keeps the current lines (they were just written) and rebinds the cart
        to the order's lineage.
        """
        with self._lock:
            self._source_order = order
            self._started = True
            self._synced_lines = tuple(order.lines)
            self._cart = self._cart.model_copy(update={
                "source_order_id": order.id,
                "source_pickup_date_key": self._calculator.date_key(order.pickup_instant),
                "selected_pickup_instant": None,
            })
            return self.state

    def snapshot(self) -> BasketSnapshot:
        with self._lock:
            return BasketSnapshot(
                cart=self._cart,
                source_order=self._source_order,
                started=self._started,
                synced_lines=self._synced_lines,
            )

    def restore(self, snapshot: BasketSnapshot) -> None:
        with self._lock:
            self._cart = snapshot.cart
            self._source_order = snapshot.source_order
            self._started = snapshot.started
            self._synced_lines = snapshot.synced_lines
            logger.debug("basket_restored", source_order_id=snapshot.cart.source_order_id)
