"""
Custom exception classes for the application.

Every error carries a stable code, an HTTP status and a details dict so the
API layer can render it with to_dict().
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "ORDER_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class IoError(ExternalServiceError):
    """
    Remote store unreachable or timed out.

    Retries are the store layer's job; callers only see the terminal failure.
    """

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(service=service, message=message, details=details)
        self.code = "IO_ERROR"


# ===================
# SCHEDULE ERRORS
# ===================

class ScheduleError(AppError):
    """Base for date arithmetic errors (caller contract violations)."""


class InvalidPickupDateError(ScheduleError):
    """Date arithmetic called with an instant that is not on the pickup weekday."""

    def __init__(self, pickup: datetime, expected_weekday: str, actual_weekday: str):
        super().__init__(
            code="INVALID_PICKUP_DATE",
            message=f"Pickup date must be a {expected_weekday}, got {actual_weekday}",
            status_code=500,
            details={
                "pickup": pickup.isoformat(),
                "expected": expected_weekday,
                "actual": actual_weekday,
            }
        )


# ===================
# BASKET ERRORS
# ===================

class BasketError(AppError):
    """Base for recoverable cart/order lifecycle errors."""


class NotEditableError(BasketError):
    """Mutation attempted on a cart that is locked past its deadline."""

    def __init__(self, state: str, order_id: Optional[str] = None):
        super().__init__(
            code="BASKET_NOT_EDITABLE",
            message="This order can no longer be changed",
            status_code=409,
            details={"state": state, "order_id": order_id}
        )


class DeadlinePassedError(BasketError):
    """Update attempted after the edit deadline (validated against the server copy)."""

    def __init__(self, order_id: str, deadline: Optional[datetime] = None, status: Optional[str] = None):
        super().__init__(
            code="BASKET_DEADLINE_PASSED",
            message="The edit deadline for this order has passed",
            status_code=409,
            details={
                "order_id": order_id,
                "deadline": deadline.isoformat() if deadline else None,
                "status": status,
            }
        )


class EmptyCartError(BasketError):
    """Checkout or update attempted with no lines."""

    def __init__(self):
        super().__init__(
            code="BASKET_EMPTY",
            message="Cart is empty",
            status_code=422,
        )


class PickupDateUnavailableError(BasketError):
    """Selected pickup date is not among the currently orderable dates."""

    def __init__(self, pickup: datetime, available: list[datetime]):
        super().__init__(
            code="PICKUP_DATE_UNAVAILABLE",
            message="Selected pickup date is no longer available",
            status_code=422,
            details={
                "pickup": pickup.isoformat(),
                "available": [d.isoformat() for d in available],
            }
        )


class InvalidBasketStateError(BasketError):
    """Operation not allowed in the cart's current state."""

    def __init__(self, operation: str, state: str, expected: list[str]):
        super().__init__(
            code="INVALID_BASKET_STATE",
            message=f"Cannot {operation} while cart is {state}",
            status_code=409,
            details={"operation": operation, "state": state, "expected": expected}
        )


class CartLineNotFoundError(NotFoundError):
    """Product is not in the cart."""

    def __init__(self, product_id: str):
        super().__init__(
            resource="Cart line",
            identifier=product_id,
            code="CART_LINE_NOT_FOUND"
        )


class OrderNotFoundError(NotFoundError):
    """Placed order not found in the store."""

    def __init__(self, order_id: str):
        super().__init__(
            resource="Order",
            identifier=order_id,
            code="ORDER_NOT_FOUND"
        )


# ===================
# MERGE ERRORS
# ===================

class MergeError(AppError):
    """Base for draft/order reconciliation errors."""


class IncompleteResolutionError(MergeError):
    """Manual merge is missing a decision for at least one conflicting product."""

    def __init__(self, missing_product_ids: list[str]):
        super().__init__(
            code="MERGE_INCOMPLETE_RESOLUTION",
            message=f"Missing a decision for {len(missing_product_ids)} conflicting products",
            status_code=422,
            details={"missing": missing_product_ids}
        )


class NoPendingConflictError(MergeError):
    """Conflict resolution requested while no conflict is pending."""

    def __init__(self):
        super().__init__(
            code="MERGE_NO_PENDING_CONFLICT",
            message="There is no pending conflict to resolve",
            status_code=409,
        )
