"""
Deadline classification — window status and urgency of an order.

Pure functions of (now, deadline[, pickup]); no I/O, safe from any context.
"""

from datetime import datetime, timedelta
from typing import Optional

from models.schedule import DeadlineInfo, PickupCycle, UrgencyLevel, WindowStatus
from utils.date_utils import format_time_remaining

# Urgency thresholds in whole hours remaining (strictly greater than)
URGENCY_NONE_HOURS = 48
URGENCY_INFO_HOURS = 24
URGENCY_WARNING_HOURS = 6
URGENCY_URGENT_HOURS = 1


class DeadlineClassifier:
    """
    Derives the coarse window status and fine-grained urgency of a deadline.

    Stateless; methods are static so callers may use the class directly.
    """

    @staticmethod
    def window_status(now: datetime, deadline: datetime, pickup: datetime) -> WindowStatus:
        """
        Status of an order window.

        Returns:
            OPEN while now <= deadline, PICKUP_PASSED once now > pickup,
            DEADLINE_PASSED in between
        """
        if now <= deadline:
            return WindowStatus.OPEN
        if now > pickup:
            return WindowStatus.PICKUP_PASSED
        return WindowStatus.DEADLINE_PASSED

    @staticmethod
    def time_remaining(now: datetime, deadline: datetime) -> Optional[timedelta]:
        """Time left until the deadline, or None if it has passed."""
        if now > deadline:
            return None
        return deadline - now

    @staticmethod
    def urgency(now: datetime, deadline: datetime) -> UrgencyLevel:
        """
        Urgency level by whole hours remaining.

        >48 NONE, >24 INFO, >6 WARNING, >1 URGENT, else CRITICAL;
        EXPIRED once the deadline has passed.
        """
        remaining = DeadlineClassifier.time_remaining(now, deadline)
        if remaining is None:
            return UrgencyLevel.EXPIRED

        hours = int(remaining.total_seconds() // 3600)

        if hours > URGENCY_NONE_HOURS:
            return UrgencyLevel.NONE
        if hours > URGENCY_INFO_HOURS:
            return UrgencyLevel.INFO
        if hours > URGENCY_WARNING_HOURS:
            return UrgencyLevel.WARNING
        if hours > URGENCY_URGENT_HOURS:
            return UrgencyLevel.URGENT
        return UrgencyLevel.CRITICAL

    @staticmethod
    def describe(now: datetime, cycle: PickupCycle) -> DeadlineInfo:
        """Full deadline picture of a pickup cycle at `now`."""
        remaining = DeadlineClassifier.time_remaining(now, cycle.deadline_instant)
        return DeadlineInfo(
            pickup_instant=cycle.pickup_instant,
            deadline_instant=cycle.deadline_instant,
            status=DeadlineClassifier.window_status(now, cycle.deadline_instant, cycle.pickup_instant),
            urgency=DeadlineClassifier.urgency(now, cycle.deadline_instant),
            time_remaining=remaining,
            time_remaining_text=format_time_remaining(remaining),
        )
