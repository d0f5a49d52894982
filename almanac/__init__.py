"""
almanac
~~~~~~~

Calendar resolution and schedule computation.  Calendars are sets of valid weekdays
minus symbolic exclusion rules (exact dates, month/day holidays, "Nth weekday of the
month"), with observance shifting and multi-calendar inheritance.  Jobs combine a
calendar with a cron-like start spec and an optional repeat frequency.

Basic usage::

    from datetime import date, datetime, timezone
    from pathlib import Path
    from almanac import CalendarEngine, ScheduleEngine, load_snapshot

    snapshot = load_snapshot(Path("almanac.yaml"))
    CalendarEngine(snapshot).contains("alice.personal", date(2021, 5, 1))
    ScheduleEngine(snapshot).next_run("alice.backup", datetime.now(tz=timezone.utc))

Public API
----------
CalendarEngine   Name-addressed calendar queries.
ScheduleEngine   Name-addressed next-run queries.
load_snapshot    Load definitions from YAML into an immutable Snapshot.
AlmanacError     Base exception for all almanac errors.
"""

from __future__ import annotations

from almanac.calendars import CalendarEngine, DateRange, contains, list_between
from almanac.errors import (
    AlmanacError,
    CyclicInheritanceError,
    InvalidDateError,
    NoMatchFoundError,
    NoObservedDateFoundError,
    NotFoundError,
    OffsetOutOfRangeError,
    ParseError,
    RangeNotResolvedError,
    SearchCancelled,
)
from almanac.models import Observance, Ref
from almanac.resolver import ResolvedCalendar, flatten
from almanac.schedule import ScheduleEngine, is_valid_run_instant, next_run
from almanac.store import Snapshot, load_snapshot

__all__ = [
    "AlmanacError",
    "CalendarEngine",
    "CyclicInheritanceError",
    "DateRange",
    "InvalidDateError",
    "NoMatchFoundError",
    "NoObservedDateFoundError",
    "NotFoundError",
    "Observance",
    "OffsetOutOfRangeError",
    "ParseError",
    "RangeNotResolvedError",
    "Ref",
    "ResolvedCalendar",
    "ScheduleEngine",
    "SearchCancelled",
    "Snapshot",
    "contains",
    "flatten",
    "is_valid_run_instant",
    "list_between",
    "load_snapshot",
    "next_run",
]
