"""
Cart schemas.

Cart and CartLine are immutable snapshots: every basket transition builds a
new Cart, so a loaded order's lines are never aliased by the draft that
replaced them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field

from models.base import BaseSchema, ValueSchema


class BasketState(str, Enum):
    """Lifecycle state of the session's active cart."""
    EMPTY = "EMPTY"                  # Nothing started
    DRAFT = "DRAFT"                  # Fresh cart, not tied to any order
    EDITING_ORDER = "EDITING_ORDER"  # Mirrors a placed order still inside its window
    LOCKED_VIEW = "LOCKED_VIEW"      # Mirrors a placed order past its deadline


class CartLine(ValueSchema):
    """A product with a fractional, unit-dependent quantity."""

    product_id: str = Field(..., min_length=1, description="Catalog product ID")
    display_name: str = Field("", description="Product name shown to the buyer")
    unit: str = Field("", description="Selling unit (kg, Stück, ...)")
    unit_price: Decimal = Field(..., ge=0, description="Price per unit")
    quantity: Decimal = Field(..., gt=0, description="Amount in units")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart(ValueSchema):
    """
    Active cart of a buyer session.

    source_order_id is None for a fresh draft; otherwise the cart mirrors
    (and may carry unsynced edits of) that placed order.
    """

    lines: tuple[CartLine, ...] = Field(default=(), description="Lines in display order")
    source_order_id: Optional[str] = Field(None, description="Placed order this cart edits")
    source_pickup_date_key: Optional[str] = Field(
        None,
        pattern=r"^\d{8}$",
        description="yyyyMMdd of the source order's pickup"
    )
    selected_pickup_instant: Optional[datetime] = Field(
        None,
        description="Pickup date chosen for a draft's checkout"
    )
    last_modified: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last mutation time"
    )

    @property
    def is_draft(self) -> bool:
        return self.source_order_id is None

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total(self) -> Decimal:
        """Sum of unit_price * quantity, recomputed on every read."""
        return sum((line.line_total for line in self.lines), Decimal("0"))

    @property
    def item_count(self) -> int:
        return len(self.lines)

    def find_line(self, product_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None


class SessionSource(str, Enum):
    """Where the active cart was hydrated from at session start."""
    DRAFT = "DRAFT"
    ORDER = "ORDER"
    EMPTY = "EMPTY"


# ===================
# API SCHEMAS
# ===================

class CartLineRequest(BaseSchema):
    """Add or update a line in the active cart."""

    product_id: str = Field(..., min_length=1, description="Catalog product ID")
    display_name: str = Field("", description="Product name")
    unit: str = Field("", description="Selling unit")
    unit_price: Decimal = Field(..., ge=0, description="Price per unit")
    quantity: Decimal = Field(..., gt=0, description="Amount in units")

    def to_line(self) -> CartLine:
        return CartLine(**self.model_dump())


class QuantityUpdate(BaseSchema):
    """Set a line's quantity; zero or less removes the line."""

    quantity: Decimal = Field(..., description="New amount in units")


class PickupDateSelection(BaseSchema):
    """Choose a pickup date (one of the available dates)."""

    pickup_instant: datetime = Field(..., description="Pickup date as returned by the dates endpoint")


class CheckoutRequest(BaseSchema):
    """Place the active draft as an order."""

    pickup_instant: Optional[datetime] = Field(
        None,
        description="Pickup date; defaults to the selected date, then the next available one"
    )
    message: str = Field("", max_length=500, description="Note for the seller")


class CartResponse(BaseSchema):
    """Active cart with derived state."""

    state: BasketState
    lines: list[CartLine]
    total: Decimal
    item_count: int
    source_order_id: Optional[str] = None
    source_pickup_date_key: Optional[str] = None
    selected_pickup_instant: Optional[datetime] = None
    last_modified: datetime
    has_changes: bool = False
    has_pending_conflict: bool = False


class SessionStartResponse(BaseSchema):
    """Result of hydrating a buyer session."""

    source: SessionSource
    cart: CartResponse
