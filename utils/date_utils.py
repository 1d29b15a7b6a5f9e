"""
Date formatting helpers for buyer-facing texts.
"""

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


def format_display_date(instant: datetime, zone: ZoneInfo) -> str:
    """
    Format a date for display (dd.MM.yyyy).

    Args:
        instant: Aware datetime
        zone: Buyer zone

    Returns:
        e.g. "16.10.2025"
    """
    return instant.astimezone(zone).strftime("%d.%m.%Y")


def format_display_datetime(instant: datetime, zone: ZoneInfo) -> str:
    """Format a date and time for display (dd.MM.yyyy HH:mm)."""
    return instant.astimezone(zone).strftime("%d.%m.%Y %H:%M")


def format_time_remaining(remaining: Optional[timedelta]) -> str:
    """
    Human-readable time left until a deadline.

    Examples:
        - 2 days 5 hours  → "2 days, 5 hours"
        - 1 day 3 hours   → "1 day, 3 hours"
        - 3 hours 10 min  → "3 hours, 10 minutes"
        - 40 seconds      → "Less than 1 minute"
        - None            → "Deadline passed"

    Args:
        remaining: Time left, or None once the deadline has passed

    Returns:
        Formatted string
    """
    if remaining is None:
        return "Deadline passed"

    total_minutes = int(remaining.total_seconds() // 60)
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)

    if days > 1:
        return f"{days} days, {hours} hours"
    if days == 1:
        return f"1 day, {hours} hours"
    if hours > 1:
        return f"{hours} hours, {minutes} minutes"
    if hours == 1:
        return f"1 hour, {minutes} minutes"
    if minutes > 1:
        return f"{minutes} minutes"
    if minutes == 1:
        return "1 minute"
    return "Less than 1 minute"
