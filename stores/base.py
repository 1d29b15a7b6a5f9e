"""Protocols for the remote stores the order lifecycle depends on."""

from typing import Callable, Optional, Protocol

from models.basket import Cart
from models.order import PlacedOrder


class Subscription(Protocol):
    """Cancellable handle for a push subscription."""

    def cancel(self) -> None:
        """Stop further deliveries."""


OrderCallback = Callable[[PlacedOrder], None]


class OrderStore(Protocol):
    """Authoritative store of placed orders."""

    async def fetch_orders_for_buyer(self, order_ids: list[str]) -> list[PlacedOrder]:
        """Fetch the given orders; unknown ids are skipped."""

    async def fetch_order(self, order_id: str) -> Optional[PlacedOrder]:
        """Fetch one order by id, or None if missing."""

    async def place_order(self, order: PlacedOrder) -> PlacedOrder:
        """Persist a new order and return it with its assigned id."""

    async def update_order(self, order: PlacedOrder) -> PlacedOrder:
        """Write lines back to an existing order; fails if it is no longer editable."""

    async def cancel_order(self, order_id: str) -> PlacedOrder:
        """Mark an order CANCELLED; fails if it is no longer editable."""

    def subscribe(self, order_id: str, callback: OrderCallback) -> Subscription:
        """Deliver every write of the order, in write order."""


class DraftStore(Protocol):
    """Per-buyer persisted draft cart."""

    async def load_draft(self, buyer_id: str) -> Optional[Cart]:
        """Return the buyer's draft, or None."""

    async def save_draft(self, buyer_id: str, cart: Cart) -> None:
        """Replace the buyer's draft."""

    async def clear_draft(self, buyer_id: str) -> None:
        """Delete the buyer's draft without raising if absent."""


class ProfileStore(Protocol):
    """Buyer profile: the map of pickup date key -> placed order id."""

    async def get_placed_order_ids(self, buyer_id: str) -> dict[str, str]:
        """Return {yyyyMMdd: order_id} for the buyer."""

    async def add_placed_order(self, buyer_id: str, date_key: str, order_id: str) -> None:
        """Register an order under its pickup date key."""

    async def remove_placed_order(self, buyer_id: str, order_id: str) -> None:
        """Unregister an order (by id) without raising if absent."""
