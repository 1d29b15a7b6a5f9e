"""
Conflict resolution between a locally persisted cart and the server order.

A conflict exists only within one lineage: the local cart must reference the
remote order's id. Resolution never drops a one-sided line unless a manual
decision explicitly removes it.
"""

from datetime import datetime
from typing import Optional

import structlog

from exceptions import IncompleteResolutionError, ValidationError
from models.basket import Cart, CartLine
from models.merge import (
    ConflictKind,
    LineDifference,
    MergeConflict,
    MergePolicy,
    MergeStrategy,
)
from models.order import PlacedOrder
from services.basket_service import Clock, utc_now
from services.schedule_service import ScheduleCalculator

logger = structlog.get_logger(__name__)


class ConflictResolver:
    """Detects and resolves divergence between a local cart and its remote order."""

    def __init__(self, calculator: ScheduleCalculator, clock: Optional[Clock] = None):
        self._calculator = calculator
        self._clock = clock or utc_now

    def detect_conflict(self, local_cart: Cart, remote_order: PlacedOrder) -> Optional[MergeConflict]:
        """
        Compare a local cart against the server copy of its order.

        Args:
            local_cart: Persisted draft or in-memory cart
            remote_order: Freshly fetched server order

        Returns:
            None if the lineages differ or lines and quantities are identical,
            otherwise a MergeConflict listing every differing product
            (remote order first, then local-only products)
        """
        if local_cart.source_order_id != remote_order.id:
            return None

        local_by_id = {line.product_id: line for line in local_cart.lines}
        remote_by_id = {line.product_id: line for line in remote_order.lines}

        diff: list[LineDifference] = []

        for remote_line in remote_order.lines:
            local_line = local_by_id.get(remote_line.product_id)
            if local_line is None:
                diff.append(LineDifference(
                    product_id=remote_line.product_id,
                    kind=ConflictKind.REMOTE_ONLY,
                    remote_line=remote_line,
                ))
            elif local_line.quantity != remote_line.quantity:
                diff.append(LineDifference(
                    product_id=remote_line.product_id,
                    kind=ConflictKind.QUANTITY_MISMATCH,
                    local_line=local_line,
                    remote_line=remote_line,
                ))

        for local_line in local_cart.lines:
            if local_line.product_id not in remote_by_id:
                diff.append(LineDifference(
                    product_id=local_line.product_id,
                    kind=ConflictKind.LOCAL_ONLY,
                    local_line=local_line,
                ))

        if not diff:
            return None

        logger.info(
            "merge_conflict_detected",
            order_id=remote_order.id,
            local_only=sum(1 for d in diff if d.kind == ConflictKind.LOCAL_ONLY),
            remote_only=sum(1 for d in diff if d.kind == ConflictKind.REMOTE_ONLY),
            mismatched=sum(1 for d in diff if d.kind == ConflictKind.QUANTITY_MISMATCH),
        )

        return MergeConflict(
            local_cart=local_cart,
            remote_order=remote_order,
            diff=tuple(diff),
        )

    def resolve(self, conflict: MergeConflict, policy: MergePolicy) -> Cart:
        """
        Apply a policy to a conflict.

        PREFER_LOCAL / PREFER_REMOTE keep the union of both sides; the
        preferred side only decides quantity mismatches. MANUAL takes the
        buyer's choice per conflicting product (None removes it).

        Returns:
            Merged cart bound to the remote order's lineage

        Raises:
            IncompleteResolutionError: MANUAL without a decision for every product
            ValidationError: A manual decision names a different product
        """
        if policy.strategy == MergeStrategy.MANUAL:
            self._validate_manual(conflict, policy)

        decided = {d.product_id: self._decide(d, policy) for d in conflict.diff}

        lines: list[CartLine] = []
        for remote_line in conflict.remote_order.lines:
            if remote_line.product_id in decided:
                chosen = decided[remote_line.product_id]
                if chosen is not None:
                    lines.append(chosen)
            else:
                lines.append(remote_line)

        for difference in conflict.diff:
            if difference.kind == ConflictKind.LOCAL_ONLY:
                chosen = decided[difference.product_id]
                if chosen is not None:
                    lines.append(chosen)

        remote_order = conflict.remote_order
        merged = Cart(
            lines=tuple(lines),
            source_order_id=remote_order.id,
            source_pickup_date_key=self._calculator.date_key(remote_order.pickup_instant),
            last_modified=self._clock(),
        )

        logger.info(
            "merge_conflict_resolved",
            order_id=remote_order.id,
            strategy=policy.strategy.value,
            line_count=merged.item_count,
        )
        return merged

    @staticmethod
    def _validate_manual(conflict: MergeConflict, policy: MergePolicy) -> None:
        missing = [pid for pid in conflict.product_ids if pid not in policy.resolutions]
        if missing:
            raise IncompleteResolutionError(missing)

        for product_id, line in policy.resolutions.items():
            if line is not None and line.product_id != product_id:
                raise ValidationError(
                    f"Resolution for {product_id} names product {line.product_id}",
                    code="RESOLUTION_PRODUCT_MISMATCH",
                    details={"product_id": product_id, "line_product_id": line.product_id},
                )

    @staticmethod
    def _decide(difference: LineDifference, policy: MergePolicy) -> Optional[CartLine]:
        if policy.strategy == MergeStrategy.MANUAL:
            return policy.resolutions[difference.product_id]

        if difference.kind == ConflictKind.QUANTITY_MISMATCH:
            if policy.strategy == MergeStrategy.PREFER_LOCAL:
                return difference.local_line
            return difference.remote_line

        # One-sided lines survive automatic policies
        return difference.local_line or difference.remote_line
