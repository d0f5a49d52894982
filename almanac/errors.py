"""
Exception hierarchy for almanac.
"""

from __future__ import annotations

from datetime import date
from typing import Sequence


class AlmanacError(Exception):
    """Base error for almanac."""


class ParseError(AlmanacError):
    """Definition validation error."""


class InvalidDateError(ParseError):
    """A date or day-of-month that cannot exist."""


class NotFoundError(AlmanacError):
    """Unknown calendar or job reference."""


class OffsetOutOfRangeError(AlmanacError):
    """Nth-weekday offset larger than the number of matching weekdays in the month."""


class CyclicInheritanceError(AlmanacError):
    def __init__(self, cycle: Sequence[object]):
        self.cycle = tuple(cycle)
        path = " -> ".join(str(item) for item in self.cycle)
        super().__init__(f"Error: cyclic calendar inheritance: {path}")


class NoObservedDateFoundError(AlmanacError):
    def __init__(self, raw: date, policy: object, bound: int):
        self.raw = raw
        self.policy = policy
        super().__init__(
            f"Error: no observed date for {raw.isoformat()} ({policy}) within {bound} days."
        )


class NoMatchFoundError(AlmanacError):
    """No run instant exists within the search horizon."""


class SearchCancelled(AlmanacError):
    """A search was cancelled by the caller or passed its deadline."""


class RangeNotResolvedError(AlmanacError):
    """A resolved calendar was queried outside the years it was resolved for."""
