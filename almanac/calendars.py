"""
Calendar queries: is a day valid, and which days in a range are.

``contains`` and ``list_between`` work on an already resolved calendar. The
``CalendarEngine`` facade resolves by name against a snapshot first.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, List, Optional

from almanac.errors import RangeNotResolvedError, SearchCancelled
from almanac.models import Ref
from almanac.resolver import ResolvedCalendar, flatten
from almanac.store import Snapshot

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class DateRange:
    """Half-open range of days: ``start`` included, ``end`` excluded."""

    start: date
    end: date

    @classmethod
    def inclusive(cls, start: date, end: date) -> "DateRange":
        return cls(start, max(start, end + ONE_DAY))

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def is_empty(self) -> bool:
        return self.end <= self.start

    def __len__(self) -> int:
        return max((self.end - self.start).days, 0)

    def __iter__(self) -> Iterator[date]:
        cursor = self.start
        while cursor < self.end:
            yield cursor
            cursor += ONE_DAY


def check_cancelled(cancel: Optional[threading.Event], deadline: Optional[float]) -> None:
    """Raise SearchCancelled if ``cancel`` is set or ``deadline`` (a time.monotonic() value) passed."""
    if cancel is not None and cancel.is_set():
        raise SearchCancelled("Error: search cancelled.")
    if deadline is not None and time.monotonic() >= deadline:
        raise SearchCancelled("Error: search deadline exceeded.")


def contains(resolved: ResolvedCalendar, day: date) -> bool:
    if not resolved.covers(day):
        raise RangeNotResolvedError(
            f"Error: {day.isoformat()} is outside {resolved.ref} resolved for "
            f"{resolved.years.start}-{resolved.years.stop - 1}."
        )
    return day.weekday() in resolved.dow_list and day not in resolved.excluded


def list_between(
    resolved: ResolvedCalendar,
    start: date,
    end: date,
    cancel: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
) -> List[date]:
    """
    Valid days in ``[start, end]``, ascending. Reversed bounds give an empty list.

    No cap is applied to the range; callers should bound it, since resolution work
    grows with the number of years spanned.
    """
    days: List[date] = []
    for day in DateRange.inclusive(start, end):
        check_cancelled(cancel, deadline)
        if contains(resolved, day):
            days.append(day)
    return days


def years_between(start: date, end: date) -> range:
    return range(start.year, max(start.year, end.year) + 1)


class CalendarEngine:
    """Name-addressed calendar queries against one immutable snapshot."""

    def __init__(self, snapshot: Snapshot, owner: Optional[str] = None):
        self.snapshot = snapshot
        self.owner = owner or snapshot.settings.owner

    def _ref(self, name: str) -> Ref:
        return self.snapshot.ref(name, self.owner)

    def resolve(self, name: str, start: date, end: Optional[date] = None) -> ResolvedCalendar:
        return flatten(self.snapshot, self._ref(name), years_between(start, end or start))

    def contains(self, name: str, day: date) -> bool:
        return contains(self.resolve(name, day), day)

    def list_between(
        self,
        name: str,
        start: date,
        end: date,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> List[date]:
        if start > end:
            return []
        return list_between(self.resolve(name, start, end), start, end, cancel=cancel, deadline=deadline)
