"""
Placed order schemas.

Orders are owned by the remote store; the service only keeps immutable
snapshots of them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import Field

from models.base import ValueSchema
from models.basket import CartLine


class OrderStatus(str, Enum):
    """Lifecycle status of an order."""
    DRAFT = "DRAFT"          # Only exists in the local cart
    PLACED = "PLACED"        # Stored and editable until the deadline
    LOCKED = "LOCKED"        # Deadline passed, waiting for pickup
    COMPLETED = "COMPLETED"  # Pickup day passed
    CANCELLED = "CANCELLED"  # Cancelled by buyer or system

    @property
    def is_editable(self) -> bool:
        return self in (OrderStatus.DRAFT, OrderStatus.PLACED)

    @property
    def is_finalized(self) -> bool:
        return self in (OrderStatus.LOCKED, OrderStatus.COMPLETED, OrderStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self not in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class PlacedOrder(ValueSchema):
    """
    An order stored for one pickup cycle.

    Persisted keyed by (seller_id, pickup date key, id).
    """

    id: str = Field("", description="Order ID (empty until placed)")
    buyer_id: str = Field(..., min_length=1, description="Buyer the order belongs to")
    seller_id: str = Field(..., min_length=1, description="Seller/tenant")
    pickup_instant: datetime = Field(..., description="Local midnight of the pickup day")
    status: OrderStatus = Field(OrderStatus.PLACED, description="Lifecycle status")
    lines: tuple[CartLine, ...] = Field(default=(), description="Line snapshot at last write")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the order was placed"
    )
    updated_at: Optional[datetime] = Field(None, description="Last write-back")
    message: str = Field("", description="Note for the seller")

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    def pickup_date_key(self, zone: ZoneInfo) -> str:
        """yyyyMMdd of the pickup day in the buyer's zone."""
        return self.pickup_instant.astimezone(zone).strftime("%Y%m%d")
