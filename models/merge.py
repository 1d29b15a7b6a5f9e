"""
Draft/order reconciliation schemas.
"""

from enum import Enum
from typing import Optional

from pydantic import Field

from models.base import BaseSchema, ValueSchema
from models.basket import Cart, CartLine, CartResponse
from models.order import PlacedOrder


class ConflictKind(str, Enum):
    """How a product differs between the local cart and the remote order."""
    LOCAL_ONLY = "LOCAL_ONLY"
    REMOTE_ONLY = "REMOTE_ONLY"
    QUANTITY_MISMATCH = "QUANTITY_MISMATCH"


class LineDifference(ValueSchema):
    """One conflicting product."""

    product_id: str
    kind: ConflictKind
    local_line: Optional[CartLine] = None
    remote_line: Optional[CartLine] = None


class MergeConflict(ValueSchema):
    """
    Divergence between a local cart and the remote order of the same lineage.

    Ephemeral: produced by the conflict resolver and consumed right away by a
    manual decision or an automatic policy.
    """

    local_cart: Cart
    remote_order: PlacedOrder
    diff: tuple[LineDifference, ...]

    @property
    def product_ids(self) -> list[str]:
        return [d.product_id for d in self.diff]


class MergeStrategy(str, Enum):
    """Conflict resolution policy."""
    PREFER_LOCAL = "PREFER_LOCAL"    # System reconciliation, local wins mismatches
    PREFER_REMOTE = "PREFER_REMOTE"  # System reconciliation, server wins mismatches
    MANUAL = "MANUAL"                # Buyer decides each conflicting product


class MergePolicy(ValueSchema):
    """
    Resolution policy.

    For MANUAL, resolutions maps every conflicting product_id to the chosen
    line, or to None to drop the product.
    """

    strategy: MergeStrategy = MergeStrategy.MANUAL
    resolutions: dict[str, Optional[CartLine]] = Field(default_factory=dict)

    @classmethod
    def prefer_local(cls) -> "MergePolicy":
        return cls(strategy=MergeStrategy.PREFER_LOCAL)

    @classmethod
    def prefer_remote(cls) -> "MergePolicy":
        return cls(strategy=MergeStrategy.PREFER_REMOTE)

    @classmethod
    def manual(cls, resolutions: dict[str, Optional[CartLine]]) -> "MergePolicy":
        return cls(strategy=MergeStrategy.MANUAL, resolutions=resolutions)


# ===================
# API SCHEMAS
# ===================

class MergeConflictResponse(BaseSchema):
    """Conflict surfaced to the buyer."""

    order_id: str
    diff: list[LineDifference]


class ResolveConflictRequest(BaseSchema):
    """Buyer's decision for a pending conflict."""

    strategy: MergeStrategy = MergeStrategy.MANUAL
    resolutions: dict[str, Optional[CartLine]] = Field(default_factory=dict)

    def to_policy(self) -> MergePolicy:
        return MergePolicy(strategy=self.strategy, resolutions=self.resolutions)


class LoadOrderResponse(BaseSchema):
    """Result of loading a placed order for editing."""

    conflict: Optional[MergeConflictResponse] = None
    cart: CartResponse
