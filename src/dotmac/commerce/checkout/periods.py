"""Billing period arithmetic."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from enum import Enum

# Fixed day counts used for price-per-day comparisons and proration.
DAYS_PER_UNIT: dict[str, int] = {
    "day": 1,
    "week": 7,
    "month": 30,
    "year": 365,
}


def _unit_name(duration_unit: str | Enum) -> str:
    value = duration_unit.value if isinstance(duration_unit, Enum) else duration_unit
    if value not in DAYS_PER_UNIT:
        raise ValueError(f"Unknown duration unit: {value}")
    return value


def days_in_cycle(duration_unit: str | Enum | None, duration: int | None) -> int:
    """Number of days in a billing cycle, 0 when the period is unknown."""
    if not duration_unit or not duration:
        return 0
    return DAYS_PER_UNIT[_unit_name(duration_unit)] * int(duration)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def add_period(moment: datetime, duration: int, duration_unit: str | Enum) -> datetime:
    """Advance ``moment`` by a calendar period (months clamp to month end)."""
    unit = _unit_name(duration_unit)
    if unit == "day":
        return moment + timedelta(days=duration)
    if unit == "week":
        return moment + timedelta(weeks=duration)
    if unit == "month":
        return _add_months(moment, duration)
    return _add_months(moment, duration * 12)


def end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=0)


def describe_period(duration: int, duration_unit: str | Enum) -> str:
    """Human description such as ``month`` or ``3 years``."""
    unit = _unit_name(duration_unit)
    if duration == 1:
        return unit
    return f"{duration} {unit}s"


__all__ = ["DAYS_PER_UNIT", "days_in_cycle", "add_period", "end_of_day", "describe_period"]
