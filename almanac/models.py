"""
Definition types: exclusion rules, calendars, jobs and the references between them.

All types are frozen; parsing from raw mappings lives in ``almanac.parsing``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping, NamedTuple, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from almanac.cron import CronSpec

NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# date.weekday() numbering: Monday == 0.
DOW_CODES = {"M": 0, "T": 1, "W": 2, "R": 3, "F": 4, "S": 5, "U": 6}
DOW_LETTERS = {v: k for k, v in DOW_CODES.items()}
WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class Observance(Enum):
    NEXT = "next"
    PREV = "prev"
    CLOSEST = "closest"
    NO_ADJUSTMENT = "noadjustment"

    def __str__(self) -> str:
        return self.name.lower()


class Ref(NamedTuple):
    owner: str
    name: str

    def __str__(self) -> str:
        return f"{self.owner}.{self.name}"


@dataclass(frozen=True)
class ExactDate:
    date: date
    description: str = ""
    observed: Observance = Observance.NO_ADJUSTMENT


@dataclass(frozen=True)
class MonthDay:
    month: int
    day: int
    description: str = ""
    observed: Observance = Observance.NO_ADJUSTMENT
    since: Optional[date] = None
    until: Optional[date] = None


@dataclass(frozen=True)
class MonthWeekdayOffset:
    month: int
    weekday: int
    offset: int
    description: str = ""
    observed: Observance = Observance.NO_ADJUSTMENT
    since: Optional[date] = None
    until: Optional[date] = None


ExclusionRule = Union[ExactDate, MonthDay, MonthWeekdayOffset]


def describe_rule(rule: ExclusionRule) -> str:
    if rule.description:
        return rule.description
    if isinstance(rule, ExactDate):
        return rule.date.isoformat()
    if isinstance(rule, MonthDay):
        return f"{rule.month:02d}-{rule.day:02d}"
    return f"{rule.offset:+d} {WEEKDAY_NAMES[rule.weekday]} of month {rule.month}"


@dataclass(frozen=True)
class CalendarDefinition:
    ref: Ref
    description: str
    dow_list: FrozenSet[int]
    public: bool
    exclude: Tuple[ExclusionRule, ...]
    inherits: Tuple[Ref, ...]

    @property
    def dow_text(self) -> str:
        return "".join(DOW_LETTERS[d] for d in sorted(self.dow_list))


@dataclass(frozen=True)
class JobSchedule:
    start: CronSpec
    frequency: Optional[timedelta] = None
    frequency_text: Optional[str] = None


@dataclass(frozen=True)
class Job:
    ref: Ref
    calendar: Ref
    timezone: ZoneInfo
    timezone_name: str
    schedule: JobSchedule
    command: Tuple[str, ...]
    environment: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    mailto: Tuple[str, ...] = ()
    public_acl: Tuple[str, ...] = ()
