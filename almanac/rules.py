"""
Materialization of exclusion rules into concrete dates for a given year.
"""

from __future__ import annotations

from calendar import monthrange
from datetime import date
from typing import FrozenSet, List, Optional

from almanac.errors import OffsetOutOfRangeError
from almanac.models import WEEKDAY_NAMES, ExactDate, ExclusionRule, MonthDay, MonthWeekdayOffset


def weekdays_in_month(year: int, month: int, weekday: int) -> List[date]:
    _, days_in_month = monthrange(year, month)
    days = [date(year, month, day) for day in range(1, days_in_month + 1)]
    return [day for day in days if day.weekday() == weekday]


def _in_bounds(year: int, since: Optional[date], until: Optional[date]) -> bool:
    if since and since.year > year:
        return False
    if until and until.year < year:
        return False
    return True


def materialize(rule: ExclusionRule, year: int) -> FrozenSet[date]:
    """Return the dates ``rule`` names in ``year`` (zero or one of them)."""
    if isinstance(rule, ExactDate):
        return frozenset({rule.date}) if rule.date.year == year else frozenset()

    if not _in_bounds(year, rule.since, rule.until):
        return frozenset()

    if isinstance(rule, MonthDay):
        try:
            return frozenset({date(year, rule.month, rule.day)})
        except ValueError:
            # Feb 29 outside leap years; other impossible days are rejected at parse time.
            return frozenset()

    if isinstance(rule, MonthWeekdayOffset):
        candidates = weekdays_in_month(year, rule.month, rule.weekday)
        if abs(rule.offset) > len(candidates):
            raise OffsetOutOfRangeError(
                f"Error: {year}-{rule.month:02d} has only {len(candidates)} "
                f"{WEEKDAY_NAMES[rule.weekday]}s; offset {rule.offset} is out of range."
            )
        index = rule.offset - 1 if rule.offset > 0 else rule.offset
        return frozenset({candidates[index]})

    raise TypeError(f"Unsupported exclusion rule: {rule!r}")
