"""
Unit tests for the schedule calculator.

Covers next pickup / deadline arithmetic, available dates and the derived
helpers, for Thursday pickup with a Tuesday 23:59 deadline.
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo
import pytest

from services.schedule_service import (
    ScheduleCalculator,
    build_schedule_calculator,
)
from models.schedule import Weekday, WeeklyCycleConfig
from exceptions import InvalidPickupDateError
from tests.factories import (
    BERLIN,
    MONDAY_10AM,
    NEXT_THURSDAY,
    THIS_THURSDAY,
    THURSDAY_AFTER,
    TUESDAY_11PM,
    WEDNESDAY_8AM,
)


# ===================
# NEXT PICKUP
# ===================

class TestNextPickup:
    """Tests for next_pickup()."""

    def test_monday_targets_this_thursday(self, calculator):
        """Monday 10:00 -> this week's Thursday."""
        assert calculator.next_pickup(MONDAY_10AM) == THIS_THURSDAY

    def test_wednesday_targets_next_thursday(self, calculator):
        """Wednesday 08:00 -> next week's Thursday (Tuesday deadline passed)."""
        assert calculator.next_pickup(WEDNESDAY_8AM) == NEXT_THURSDAY

    def test_deadline_day_still_targets_this_thursday(self, calculator):
        assert calculator.next_pickup(TUESDAY_11PM) == THIS_THURSDAY

    def test_pickup_day_rolls_forward_a_week(self, calculator):
        thursday_noon = datetime(2025, 10, 16, 12, 0, tzinfo=BERLIN)
        assert calculator.next_pickup(thursday_noon) == NEXT_THURSDAY

    def test_weekend_targets_next_thursday(self, calculator):
        sunday = datetime(2025, 10, 19, 18, 0, tzinfo=BERLIN)
        assert calculator.next_pickup(sunday) == NEXT_THURSDAY

    def test_returns_local_midnight(self, calculator):
        pickup = calculator.next_pickup(MONDAY_10AM)
        local = pickup.astimezone(BERLIN)
        assert (local.hour, local.minute, local.second) == (0, 0, 0)

    def test_uses_calculator_zone_for_weekday(self, calculator):
        """Tuesday 22:30 UTC is already Wednesday in Berlin."""
        late_tuesday_utc = datetime(2025, 10, 14, 22, 30, tzinfo=timezone.utc)
        assert calculator.next_pickup(late_tuesday_utc) == NEXT_THURSDAY

    def test_always_future_and_on_pickup_weekday(self, calculator):
        """Every hour of three weeks lands strictly in the future on a Thursday."""
        now = datetime(2025, 10, 6, 0, 0, tzinfo=BERLIN)
        end = now + timedelta(weeks=3)
        while now < end:
            pickup = calculator.next_pickup(now)
            assert pickup > now
            assert pickup.astimezone(BERLIN).isoweekday() == Weekday.THURSDAY
            now += timedelta(hours=1)


# ===================
# EDIT DEADLINE
# ===================

class TestEditDeadline:
    """Tests for edit_deadline()."""

    def test_deadline_is_tuesday_end_of_minute(self, calculator):
        deadline = calculator.edit_deadline(THIS_THURSDAY)

        assert deadline == datetime(2025, 10, 14, 23, 59, 59, 999000, tzinfo=BERLIN)

    def test_deadline_before_pickup_across_weeks(self, calculator):
        pickup = THIS_THURSDAY
        for _ in range(10):
            deadline = calculator.edit_deadline(pickup)
            assert deadline < pickup
            assert (pickup.date() - deadline.date()).days == 2
            assert deadline.isoweekday() == Weekday.TUESDAY
            pickup = calculator.next_pickup(pickup)

    def test_deadline_across_dst_change(self, calculator):
        """Berlin leaves DST on 2025-10-26; the deadline keeps its wall-clock time."""
        deadline = calculator.edit_deadline(THURSDAY_AFTER)
        local = deadline.astimezone(BERLIN)

        assert local.date() == datetime(2025, 10, 28).date()
        assert (local.hour, local.minute) == (23, 59)
        assert local.utcoffset() == timedelta(hours=1)

    def test_rejects_non_pickup_weekday(self, calculator):
        with pytest.raises(InvalidPickupDateError) as exc_info:
            calculator.edit_deadline(WEDNESDAY_8AM)

        assert exc_info.value.details["expected"] == "THURSDAY"
        assert exc_info.value.details["actual"] == "WEDNESDAY"

    def test_degenerate_same_day_config(self, zone):
        """Deadline and pickup on the same weekday: deadline is that day."""
        config = WeeklyCycleConfig(
            pickup_weekday=Weekday.THURSDAY,
            deadline_weekday=Weekday.THURSDAY,
            deadline_hour=8,
            deadline_minute=0,
        )
        calculator = ScheduleCalculator(config, zone)

        deadline = calculator.edit_deadline(THIS_THURSDAY)

        assert deadline.date() == THIS_THURSDAY.date()
        assert (deadline.hour, deadline.minute) == (8, 0)


# ===================
# AVAILABLE DATES
# ===================

class TestAvailablePickupDates:
    """Tests for available_pickup_dates()."""

    def test_monday_offers_this_week_first(self, calculator):
        dates = list(calculator.available_pickup_dates(3, MONDAY_10AM))
        assert dates == [THIS_THURSDAY, NEXT_THURSDAY, THURSDAY_AFTER]

    def test_wednesday_skips_locked_week(self, calculator):
        dates = list(calculator.available_pickup_dates(2, WEDNESDAY_8AM))
        assert dates == [NEXT_THURSDAY, THURSDAY_AFTER]

    def test_just_after_deadline_skips_this_week(self, calculator):
        just_after = calculator.edit_deadline(THIS_THURSDAY) + timedelta(milliseconds=1)
        dates = list(calculator.available_pickup_dates(1, just_after))
        assert dates == [NEXT_THURSDAY]

    def test_exactly_at_deadline_still_available(self, calculator):
        at_deadline = calculator.edit_deadline(THIS_THURSDAY)
        assert list(calculator.available_pickup_dates(1, at_deadline)) == [THIS_THURSDAY]

    def test_distinct_increasing_and_open(self, calculator):
        now = TUESDAY_11PM
        dates = list(calculator.available_pickup_dates(8, now))

        assert len(dates) == 8
        assert len(set(dates)) == 8
        assert dates == sorted(dates)
        assert all(now <= calculator.edit_deadline(d) for d in dates)

    def test_sequence_is_restartable(self, calculator):
        dates = calculator.available_pickup_dates(4, MONDAY_10AM)
        assert list(dates) == list(dates)
        assert len(dates) == 4

    def test_zero_count_is_empty(self, calculator):
        assert list(calculator.available_pickup_dates(0, MONDAY_10AM)) == []

    def test_negative_count_raises(self, calculator):
        with pytest.raises(ValueError):
            calculator.available_pickup_dates(-1, MONDAY_10AM)


# ===================
# DERIVED HELPERS
# ===================

class TestDerivedHelpers:
    """Tests for date keys, cycles and validity checks."""

    def test_date_key_uses_local_date(self, calculator):
        assert calculator.date_key(THIS_THURSDAY) == "20251016"
        # Same instant expressed in UTC (Wednesday 22:00Z)
        assert calculator.date_key(THIS_THURSDAY.astimezone(timezone.utc)) == "20251016"

    def test_cycle_for(self, calculator):
        cycle = calculator.cycle_for(THIS_THURSDAY)

        assert cycle.pickup_instant == THIS_THURSDAY
        assert cycle.deadline_instant == calculator.edit_deadline(THIS_THURSDAY)
        assert cycle.date_key == "20251016"

    def test_current_cycle(self, calculator):
        assert calculator.current_cycle(WEDNESDAY_8AM).date_key == "20251023"

    def test_can_edit(self, calculator):
        assert calculator.can_edit(THIS_THURSDAY, MONDAY_10AM) is True
        assert calculator.can_edit(THIS_THURSDAY, WEDNESDAY_8AM) is False

    def test_is_pickup_date_valid(self, calculator):
        assert calculator.is_pickup_date_valid(THIS_THURSDAY, MONDAY_10AM) is True
        assert calculator.is_pickup_date_valid(THIS_THURSDAY, WEDNESDAY_8AM) is False
        past_thursday = THIS_THURSDAY - timedelta(weeks=1)
        assert calculator.is_pickup_date_valid(past_thursday, MONDAY_10AM) is False

    def test_is_current_cycle(self, calculator):
        assert calculator.is_current_cycle(THIS_THURSDAY, MONDAY_10AM) is True
        assert calculator.is_current_cycle(NEXT_THURSDAY, MONDAY_10AM) is False

    def test_build_with_explicit_config(self, cycle_config):
        tokyo = ZoneInfo("Asia/Tokyo")
        calculator = build_schedule_calculator(cycle_config, tokyo)

        assert calculator.zone == tokyo
        assert calculator.config == cycle_config
