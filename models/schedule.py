"""
Weekly pickup cycle schemas.

A single recurring cycle per deployment: one pickup weekday and one edit
deadline (weekday + time of day) per week.
"""

from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Optional

from pydantic import Field

from models.base import ValueSchema


class Weekday(IntEnum):
    """ISO weekday numbers, as returned by date.isoweekday()."""
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6
    SUNDAY = 7


class WindowStatus(str, Enum):
    """Where "now" sits relative to an order's deadline and pickup."""
    OPEN = "OPEN"                        # Can place or edit the order
    DEADLINE_PASSED = "DEADLINE_PASSED"  # Locked, waiting for pickup
    PICKUP_PASSED = "PICKUP_PASSED"      # Pickup day is over


class UrgencyLevel(str, Enum):
    """Deadline proximity, bucketed by whole hours remaining."""
    NONE = "NONE"          # More than 48 hours
    INFO = "INFO"          # 24-48 hours
    WARNING = "WARNING"    # 6-24 hours
    URGENT = "URGENT"      # 1-6 hours
    CRITICAL = "CRITICAL"  # Less than 1 hour
    EXPIRED = "EXPIRED"    # Deadline passed


class WeeklyCycleConfig(ValueSchema):
    """
    Weekly pickup cycle configuration.

    Deadline and pickup weekday may coincide in degenerate setups; the
    canonical config places the deadline strictly before pickup.
    """

    pickup_weekday: Weekday = Field(
        Weekday.THURSDAY,
        description="Weekday orders are picked up"
    )
    deadline_weekday: Weekday = Field(
        Weekday.TUESDAY,
        description="Weekday of the edit deadline"
    )
    deadline_hour: int = Field(
        23,
        ge=0,
        le=23,
        description="Hour of the edit deadline (0-23)"
    )
    deadline_minute: int = Field(
        59,
        ge=0,
        le=59,
        description="Minute of the edit deadline (0-59)"
    )

    @property
    def days_deadline_to_pickup(self) -> int:
        """Days from the deadline weekday forward to the pickup weekday (0-6)."""
        return (self.pickup_weekday - self.deadline_weekday) % 7


class PickupCycle(ValueSchema):
    """
    One week's pickup and its edit deadline.

    Derived on demand by the schedule calculator; never persisted as the
    source of truth (orders carry their own pickup instant).
    """

    pickup_instant: datetime = Field(..., description="Local midnight of the pickup day")
    deadline_instant: datetime = Field(..., description="Last instant the order may change")
    date_key: str = Field(..., pattern=r"^\d{8}$", description="yyyyMMdd of the pickup day")


class DeadlineInfo(ValueSchema):
    """Deadline status of the active order, as shown to the buyer."""

    pickup_instant: datetime
    deadline_instant: datetime
    status: WindowStatus
    urgency: UrgencyLevel
    time_remaining: Optional[timedelta] = None
    time_remaining_text: str
