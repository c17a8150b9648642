"""
Date helpers shared by the engine (shelf life, expiry countdowns).
"""
import calendar
from datetime import date, datetime
from typing import Union


def add_months(start: Union[date, datetime], months: int) -> date:
    """
    Add calendar months to a date, clamping the day to the target month length.

    Args:
        start: Start date (datetime values are truncated to their date)
        months: Months to add (may be negative)

    Returns:
        Resulting date (e.g. 2024-08-31 + 6 months -> 2025-02-28)
    """
    if isinstance(start, datetime):
        start = start.date()
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_until(target: date, today: date) -> int:
    """Whole days from today to target (negative once target has passed)."""
    return (target - today).days
