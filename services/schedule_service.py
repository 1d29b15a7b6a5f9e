"""
Schedule calculation service — pickup date arithmetic.

Business rules (configurable via WeeklyCycleConfig):
- One pickup weekday per week (default: Thursday)
- Edit deadline on a fixed weekday/time before pickup (default: Tuesday 23:59:59.999)
- Today's pickup is never orderable; past this week's deadline weekday the
  next orderable pickup is the following week's

All methods are pure and synchronous. A calculator is bound to one IANA zone,
so every weekday/date extraction within one computation uses the same zone.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

import structlog

from config import settings
from exceptions import InvalidPickupDateError
from models.schedule import PickupCycle, Weekday, WeeklyCycleConfig

logger = structlog.get_logger(__name__)

# Deadline fires at the very end of the configured minute
DEADLINE_SECOND = 59
DEADLINE_MICROSECOND = 999_000


class AvailablePickupDates:
    """
    Lazy, restartable sequence of orderable pickup dates.

    Each iteration recomputes from the same `now`, so iterating twice yields
    the same dates.
    """

    def __init__(self, calculator: "ScheduleCalculator", count: int, now: datetime):
        if count < 0:
            raise ValueError(f"count must be >= 0, got {count}")
        self._calculator = calculator
        self._count = count
        self._now = now

    def __iter__(self) -> Iterator[datetime]:
        return self._calculator._iter_available(self._count, self._now)

    def __len__(self) -> int:
        return self._count

    def __repr__(self) -> str:
        return f"AvailablePickupDates(count={self._count}, now={self._now.isoformat()})"


class ScheduleCalculator:
    """
    Weekly pickup date arithmetic.

    Derives the next pickup date and its edit deadline from an arbitrary
    "now" for a single configured weekly cycle.
    """

    def __init__(self, config: WeeklyCycleConfig, zone: ZoneInfo):
        self.config = config
        self.zone = zone

    # ===================
    # HELPERS
    # ===================

    @staticmethod
    def _days_until(from_day: int, target_day: int) -> int:
        """Days from from_day forward to target_day (1-7, same day = 7)."""
        diff = (target_day - from_day) % 7
        return 7 if diff == 0 else diff

    def _local_date(self, instant: datetime) -> date:
        return instant.astimezone(self.zone).date()

    def _start_of_day(self, day: date) -> datetime:
        return datetime.combine(day, time(0, 0), tzinfo=self.zone)

    # ===================
    # CORE ARITHMETIC
    # ===================

    def next_pickup(self, now: datetime) -> datetime:
        """
        Next pickup date reachable from `now`.

        - On the pickup weekday itself: next week's pickup
        - Past this week's deadline weekday: next week's pickup
        - On the deadline weekday: this week's pickup (the deadline time
          decides editability, see available_pickup_dates)

        Args:
            now: Aware datetime

        Returns:
            Pickup day at local midnight in the calculator's zone
        """
        local_date = self._local_date(now)
        days_to_pickup = self._days_until(local_date.isoweekday(), self.config.pickup_weekday)

        if days_to_pickup < self.config.days_deadline_to_pickup:
            days_to_pickup += 7

        return self._start_of_day(local_date + timedelta(days=days_to_pickup))

    def edit_deadline(self, pickup: datetime) -> datetime:
        """
        Edit deadline of the given pickup date.

        Args:
            pickup: Instant falling on the configured pickup weekday

        Returns:
            Deadline weekday at deadline_hour:deadline_minute:59.999 local time

        Raises:
            InvalidPickupDateError: If pickup is not on the pickup weekday
        """
        pickup_date = self._local_date(pickup)
        if pickup_date.isoweekday() != self.config.pickup_weekday:
            raise InvalidPickupDateError(
                pickup,
                expected_weekday=Weekday(self.config.pickup_weekday).name,
                actual_weekday=Weekday(pickup_date.isoweekday()).name,
            )

        deadline_date = pickup_date - timedelta(days=self.config.days_deadline_to_pickup)
        return datetime.combine(
            deadline_date,
            time(
                self.config.deadline_hour,
                self.config.deadline_minute,
                DEADLINE_SECOND,
                DEADLINE_MICROSECOND,
            ),
            tzinfo=self.zone,
        )

    def available_pickup_dates(self, count: int, now: datetime) -> AvailablePickupDates:
        """
        Next `count` pickup dates whose deadline has not passed at `now`.

        Args:
            count: How many dates to produce
            now: Aware datetime the deadlines are checked against

        Returns:
            Restartable lazy sequence of pickup instants, strictly increasing
        """
        return AvailablePickupDates(self, count, now)

    def _iter_available(self, count: int, now: datetime) -> Iterator[datetime]:
        found = 0
        cursor = now
        while found < count:
            pickup = self.next_pickup(cursor)
            if now <= self.edit_deadline(pickup):
                found += 1
                yield pickup
            # Continue from the day after this pickup
            cursor = self._start_of_day(self._local_date(pickup) + timedelta(days=1))

    # ===================
    # DERIVED HELPERS
    # ===================

    def date_key(self, instant: datetime) -> str:
        """yyyyMMdd of the instant's local date, used in storage keys."""
        return self._local_date(instant).strftime("%Y%m%d")

    def cycle_for(self, pickup: datetime) -> PickupCycle:
        """Pickup cycle of a pickup date (validates the weekday)."""
        return PickupCycle(
            pickup_instant=pickup,
            deadline_instant=self.edit_deadline(pickup),
            date_key=self.date_key(pickup),
        )

    def current_cycle(self, now: datetime) -> PickupCycle:
        """Cycle of the next pickup reachable from `now`."""
        return self.cycle_for(self.next_pickup(now))

    def can_edit(self, pickup: datetime, now: datetime) -> bool:
        """True while `now` is at or before the pickup's deadline."""
        return now <= self.edit_deadline(pickup)

    def is_pickup_date_valid(self, pickup: datetime, now: datetime) -> bool:
        """A selected pickup date is valid if it is in the future and still editable."""
        if pickup <= now:
            return False
        return self.can_edit(pickup, now)

    def is_current_cycle(self, pickup: datetime, now: datetime) -> bool:
        """True if the pickup is the next pickup date from `now`."""
        return self._local_date(pickup) == self._local_date(self.next_pickup(now))


def build_schedule_calculator(
    config: Optional[WeeklyCycleConfig] = None,
    zone: Optional[ZoneInfo] = None,
) -> ScheduleCalculator:
    """Calculator for the given cycle, defaulting to the configured one."""
    return ScheduleCalculator(config or settings.cycle_config, zone or settings.zone)


# Singleton instance
_schedule_calculator: Optional[ScheduleCalculator] = None


def get_schedule_calculator() -> ScheduleCalculator:
    """Get or create the calculator for the configured cycle."""
    global _schedule_calculator
    if _schedule_calculator is None:
        _schedule_calculator = build_schedule_calculator()
        logger.info(
            "schedule_calculator_created",
            pickup_weekday=_schedule_calculator.config.pickup_weekday.name,
            deadline_weekday=_schedule_calculator.config.deadline_weekday.name,
            zone=str(_schedule_calculator.zone),
        )
    return _schedule_calculator
