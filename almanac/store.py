"""
Immutable snapshots of calendar and job definitions, loaded from YAML.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml

from almanac.errors import NotFoundError, ParseError
from almanac.models import CalendarDefinition, Job, Ref
from almanac.parsing import (
    ensure_int,
    parse_calendars,
    parse_jobs,
    parse_name,
    parse_reference,
    parse_timezone,
    system_timezone,
)

DEFAULT_CONFIG = "almanac.yaml"
DEFAULT_HORIZON_YEARS = 5
TOP_LEVEL_KEYS = {"version", "defaults", "calendars", "jobs"}
DEFAULT_KEYS = {"owner", "timezone", "horizon_years"}


def default_owner() -> str:
    user = os.environ.get("USER", "").strip()
    return user if user and "." not in user and "/" not in user else "default"


def default_config_path() -> Path:
    return Path(os.environ.get("ALMANAC_CONFIG") or DEFAULT_CONFIG)


@dataclass(frozen=True)
class Settings:
    owner: str
    timezone_name: str
    horizon_years: int = DEFAULT_HORIZON_YEARS


@dataclass(frozen=True)
class Snapshot:
    settings: Settings
    calendars: Mapping[Ref, CalendarDefinition] = field(default_factory=lambda: MappingProxyType({}))
    jobs: Mapping[Ref, Job] = field(default_factory=lambda: MappingProxyType({}))

    def ref(self, name: str, owner: Optional[str] = None) -> Ref:
        return parse_reference(name, owner or self.settings.owner, "reference")

    def get_calendar(self, ref: Ref) -> CalendarDefinition:
        try:
            return self.calendars[ref]
        except KeyError:
            raise NotFoundError(f'Error: Unknown calendar "{ref}".') from None

    def get_job(self, ref: Ref) -> Job:
        try:
            return self.jobs[ref]
        except KeyError:
            raise NotFoundError(f'Error: Unknown job "{ref}".') from None


def build_snapshot(
    settings: Settings,
    calendars: Iterable[CalendarDefinition] = (),
    jobs: Iterable[Job] = (),
) -> Snapshot:
    calendar_map: Dict[Ref, CalendarDefinition] = {}
    for definition in calendars:
        if definition.ref in calendar_map:
            raise ParseError(f'Error: Duplicate calendar "{definition.ref}".')
        calendar_map[definition.ref] = definition
    job_map: Dict[Ref, Job] = {}
    for job in jobs:
        if job.ref in job_map:
            raise ParseError(f'Error: Duplicate job "{job.ref}".')
        job_map[job.ref] = job
    return Snapshot(
        settings=settings,
        calendars=MappingProxyType(calendar_map),
        jobs=MappingProxyType(job_map),
    )


def parse_settings(raw: Any) -> Settings:
    defaults = raw or {}
    if not isinstance(defaults, dict):
        raise ParseError("Error: defaults must be a mapping.")
    unknown = set(defaults.keys()) - DEFAULT_KEYS
    if unknown:
        raise ParseError(f"Error: Unknown keys in defaults: {sorted(unknown)}.")

    owner = parse_name(defaults["owner"], "defaults.owner") if "owner" in defaults else default_owner()
    _, system_tz_name = system_timezone()
    timezone_name = defaults.get("timezone", system_tz_name)
    if not isinstance(timezone_name, str):
        raise ParseError("Error: defaults.timezone must be a timezone string.")
    parse_timezone(timezone_name, "defaults.timezone")
    horizon_years = ensure_int(
        defaults.get("horizon_years"), "defaults.horizon_years", DEFAULT_HORIZON_YEARS, 1
    )
    return Settings(owner=owner, timezone_name=timezone_name, horizon_years=horizon_years)


def snapshot_from_payload(payload: Any) -> Snapshot:
    if not isinstance(payload, dict):
        raise ParseError("Error: definitions document must be a mapping.")
    unknown_top = set(payload.keys()) - TOP_LEVEL_KEYS
    if unknown_top:
        raise ParseError(f"Error: Unknown top-level keys: {sorted(unknown_top)}.")

    settings = parse_settings(payload.get("defaults"))
    calendars = parse_calendars(payload.get("calendars"), "calendars", settings.owner)
    jobs = parse_jobs(payload.get("jobs"), "jobs", settings.owner, settings.timezone_name)
    return build_snapshot(settings, calendars, jobs)


def _load_config_payload(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise ParseError(f"Error: Config file not found: {config_path}")

    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ParseError(f"Error: Failed to parse YAML in {config_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ParseError(f"Error: {config_path} must contain a mapping at the top level.")
    return payload


def load_snapshot(config_path: Path) -> Snapshot:
    return snapshot_from_payload(_load_config_payload(config_path))
