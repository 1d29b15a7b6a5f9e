"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ExternalServiceError,
    IoError,

    # Schedule
    ScheduleError,
    InvalidPickupDateError,

    # Basket
    BasketError,
    NotEditableError,
    DeadlinePassedError,
    EmptyCartError,
    PickupDateUnavailableError,
    InvalidBasketStateError,
    CartLineNotFoundError,
    OrderNotFoundError,

    # Merge
    MergeError,
    IncompleteResolutionError,
    NoPendingConflictError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ExternalServiceError",
    "IoError",

    # Schedule
    "ScheduleError",
    "InvalidPickupDateError",

    # Basket
    "BasketError",
    "NotEditableError",
    "DeadlinePassedError",
    "EmptyCartError",
    "PickupDateUnavailableError",
    "InvalidBasketStateError",
    "CartLineNotFoundError",
    "OrderNotFoundError",

    # Merge
    "MergeError",
    "IncompleteResolutionError",
    "NoPendingConflictError",
]
