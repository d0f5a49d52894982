"""
Inheritance flattening: a calendar plus everything it inherits, reduced to one set of
excluded dates for a range of years.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import MAXYEAR, MINYEAR, date
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Set, Tuple

from almanac.errors import CyclicInheritanceError, OffsetOutOfRangeError
from almanac.models import CalendarDefinition, ExclusionRule, Ref, describe_rule
from almanac.observance import adjust
from almanac.rules import materialize
from almanac.store import Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedRule:
    calendar: Ref
    year: int
    rule: ExclusionRule
    reason: str


@dataclass(frozen=True)
class ResolvedCalendar:
    ref: Ref
    dow_list: FrozenSet[int]
    excluded: FrozenSet[date]
    years: range
    descriptions: Mapping[date, str] = field(default_factory=lambda: MappingProxyType({}))
    skipped: Tuple[SkippedRule, ...] = ()

    def covers(self, day: date) -> bool:
        return day.year in self.years

    def holidays(self, start: Optional[date] = None, end: Optional[date] = None) -> Iterator[Tuple[date, str]]:
        for day in sorted(self.excluded):
            if start and day < start:
                continue
            if end and day > end:
                break
            yield day, self.descriptions.get(day, "")


def inheritance_order(snapshot: Snapshot, ref: Ref) -> List[CalendarDefinition]:
    """
    Depth-first post-order over ``inherits``: ancestors first, ``ref`` last.

    Calendars reachable through several paths appear once. Meeting a calendar that is
    still on the current path raises CyclicInheritanceError with that path.
    """
    definitions: Dict[Ref, CalendarDefinition] = {ref: snapshot.get_calendar(ref)}
    order: List[CalendarDefinition] = []
    done: Set[Ref] = set()
    path: List[Ref] = [ref]
    stack = [iter(definitions[ref].inherits)]

    while stack:
        parent = next(stack[-1], None)
        if parent is None:
            stack.pop()
            current = path.pop()
            done.add(current)
            order.append(definitions[current])
            continue
        if parent in path:
            raise CyclicInheritanceError(path[path.index(parent):] + [parent])
        if parent in done:
            continue
        definitions[parent] = snapshot.get_calendar(parent)
        path.append(parent)
        stack.append(iter(definitions[parent].inherits))

    return order


def flatten(snapshot: Snapshot, ref: Ref, years: range) -> ResolvedCalendar:
    """
    Resolve ``ref`` for ``years``.

    One extra year on each side is materialized so holidays observed across a year
    boundary (Jan 1 on a Saturday observed on Dec 31) land in the result.
    """
    order = inheritance_order(snapshot, ref)
    padded = range(max(years.start - 1, MINYEAR), min(years.stop + 1, MAXYEAR + 1))
    excluded: Set[date] = set()
    descriptions: Dict[date, str] = {}
    skipped: List[SkippedRule] = []

    for definition in order:
        # Observance sees only this calendar's own dates; parents never shift a child's holiday.
        own: Set[date] = set()
        for year in padded:
            for rule in definition.exclude:
                try:
                    nominal = materialize(rule, year)
                except OffsetOutOfRangeError as exc:
                    logger.warning("Skipping rule %r of %s for %s: %s", describe_rule(rule), definition.ref, year, exc)
                    skipped.append(SkippedRule(definition.ref, year, rule, str(exc)))
                    continue
                for raw in sorted(nominal):
                    observed = adjust(raw, rule.observed, definition.dow_list, own)
                    own.add(observed)
                    descriptions.setdefault(observed, describe_rule(rule))
        excluded |= own

    root = order[-1]
    logger.debug(
        "Resolved %s for %s-%s: %d calendar(s), %d excluded date(s)",
        ref,
        years.start,
        years.stop - 1,
        len(order),
        len(excluded),
    )
    return ResolvedCalendar(
        ref=ref,
        dow_list=root.dow_list,
        excluded=frozenset(excluded),
        years=years,
        descriptions=MappingProxyType(descriptions),
        skipped=tuple(skipped),
    )
