"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    ValueSchema,
)
from models.schedule import (
    Weekday,
    WindowStatus,
    UrgencyLevel,
    WeeklyCycleConfig,
    PickupCycle,
    DeadlineInfo,
)
from models.basket import (
    BasketState,
    CartLine,
    Cart,
    SessionSource,
    CartLineRequest,
    QuantityUpdate,
    PickupDateSelection,
    CheckoutRequest,
    CartResponse,
    SessionStartResponse,
)
from models.order import (
    OrderStatus,
    PlacedOrder,
)
from models.merge import (
    ConflictKind,
    LineDifference,
    MergeConflict,
    MergeStrategy,
    MergePolicy,
    MergeConflictResponse,
    ResolveConflictRequest,
    LoadOrderResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "ValueSchema",

    # Schedule
    "Weekday",
    "WindowStatus",
    "UrgencyLevel",
    "WeeklyCycleConfig",
    "PickupCycle",
    "DeadlineInfo",

    # Basket
    "BasketState",
    "CartLine",
    "Cart",
    "SessionSource",
    "CartLineRequest",
    "QuantityUpdate",
    "PickupDateSelection",
    "CheckoutRequest",
    "CartResponse",
    "SessionStartResponse",

    # Orders
    "OrderStatus",
    "PlacedOrder",

    # Merge
    "ConflictKind",
    "LineDifference",
    "MergeConflict",
    "MergeStrategy",
    "MergePolicy",
    "MergeConflictResponse",
    "ResolveConflictRequest",
    "LoadOrderResponse",
]
