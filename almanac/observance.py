"""
Observance adjustment: moving a nominal holiday onto the day it is actually observed.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import AbstractSet, Iterator

from almanac.errors import NoObservedDateFoundError
from almanac.models import Observance

MAX_SCAN_DAYS = 14


def _qualifies(candidate: date, dow_mask: AbstractSet[int], already_excluded: AbstractSet[date]) -> bool:
    return candidate.weekday() in dow_mask and candidate not in already_excluded


def _candidates(raw: date, policy: Observance) -> Iterator[date]:
    for distance in range(1, MAX_SCAN_DAYS + 1):
        step = timedelta(days=distance)
        if policy in (Observance.NEXT, Observance.CLOSEST) and date.max - raw >= step:
            yield raw + step
        if policy in (Observance.PREV, Observance.CLOSEST) and raw - date.min >= step:
            yield raw - step


def adjust(
    raw: date,
    policy: Observance,
    dow_mask: AbstractSet[int],
    already_excluded: AbstractSet[date],
) -> date:
    """
    Return the observed date for the holiday nominally on ``raw``.

    Shifting policies never return ``raw`` itself. Closest checks the later day first at
    each distance, so ties go forward.
    """
    if policy is Observance.NO_ADJUSTMENT:
        return raw
    for candidate in _candidates(raw, policy):
        if _qualifies(candidate, dow_mask, already_excluded):
            return candidate
    raise NoObservedDateFoundError(raw, policy, MAX_SCAN_DAYS)
