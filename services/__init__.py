"""
Business logic services.

Each service handles one domain area.
"""

from services.schedule_service import (
    ScheduleCalculator,
    AvailablePickupDates,
    build_schedule_calculator,
    get_schedule_calculator,
)
from services.deadline_service import DeadlineClassifier
from services.basket_service import BasketStateMachine, BasketSnapshot
from services.conflict_service import ConflictResolver
from services.subscription_service import Subscription, SubscriptionHub
from services.order_lifecycle_service import OrderLifecycleCoordinator
from services.session_service import (
    SessionRegistry,
    build_stores,
    build_session_registry,
    get_session_registry,
    reset_session_registry,
)

__all__ = [
    "ScheduleCalculator",
    "AvailablePickupDates",
    "build_schedule_calculator",
    "get_schedule_calculator",
    "DeadlineClassifier",
    "BasketStateMachine",
    "BasketSnapshot",
    "ConflictResolver",
    "Subscription",
    "SubscriptionHub",
    "OrderLifecycleCoordinator",
    "SessionRegistry",
    "build_stores",
    "build_session_registry",
    "get_session_registry",
    "reset_session_registry",
]
