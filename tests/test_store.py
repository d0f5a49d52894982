from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
import yaml

from almanac.errors import NotFoundError, ParseError
from almanac.models import Ref
from almanac.store import load_snapshot, snapshot_from_payload


def _write_config(tmp_path: Path, config: dict) -> Path:
    path = tmp_path / "almanac.yaml"
    path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return path


def _base_config(**overrides) -> dict:
    config = {
        "version": 1,
        "defaults": {"owner": "alice", "timezone": "UTC", "horizon_years": 2},
        "calendars": [
            {
                "name": "work",
                "dow_list": ["M", "T", "W", "R", "F"],
                "exclude": [{"date": date(2021, 1, 1), "description": "New Year"}],
            }
        ],
        "jobs": [
            {
                "name": "backup",
                "calendar": "work",
                "schedule": {"start": {"minute": 0, "hour": 2}},
                "command": ["backup.sh"],
            }
        ],
    }
    config.update(overrides)
    return config


def test_load_snapshot_from_yaml(tmp_path: Path) -> None:
    snapshot = load_snapshot(_write_config(tmp_path, _base_config()))
    assert snapshot.settings.owner == "alice"
    assert snapshot.settings.horizon_years == 2
    assert list(snapshot.calendars) == [Ref("alice", "work")]
    assert snapshot.get_job(Ref("alice", "backup")).calendar == Ref("alice", "work")
    # Unquoted YAML dates arrive as date objects.
    assert snapshot.get_calendar(Ref("alice", "work")).exclude[0].date == date(2021, 1, 1)


def test_snapshot_is_read_only(tmp_path: Path) -> None:
    snapshot = load_snapshot(_write_config(tmp_path, _base_config()))
    with pytest.raises(TypeError):
        snapshot.calendars[Ref("alice", "other")] = snapshot.get_calendar(Ref("alice", "work"))


def test_same_name_different_owners_coexist() -> None:
    snapshot = snapshot_from_payload(
        {
            "defaults": {"owner": "alice", "timezone": "UTC"},
            "calendars": [{"name": "work"}, {"name": "work", "owner": "bob"}],
        }
    )
    assert set(snapshot.calendars) == {Ref("alice", "work"), Ref("bob", "work")}


def test_duplicate_calendar_rejected() -> None:
    with pytest.raises(ParseError, match='Duplicate calendar "alice.work"'):
        snapshot_from_payload(
            {"defaults": {"owner": "alice", "timezone": "UTC"}, "calendars": [{"name": "work"}, {"name": "work"}]}
        )


def test_unknown_top_level_keys_rejected() -> None:
    with pytest.raises(ParseError, match="Unknown top-level keys"):
        snapshot_from_payload(_base_config(holidays=[]))


def test_unknown_defaults_rejected() -> None:
    with pytest.raises(ParseError, match="Unknown keys in defaults"):
        snapshot_from_payload(_base_config(defaults={"owner": "alice", "overlap": "skip"}))


def test_unknown_reference_reported() -> None:
    snapshot = snapshot_from_payload(_base_config())
    with pytest.raises(NotFoundError, match='Unknown calendar "bob.work"'):
        snapshot.get_calendar(snapshot.ref("bob/work"))
    with pytest.raises(NotFoundError, match='Unknown job "alice.restore"'):
        snapshot.get_job(snapshot.ref("restore"))


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ParseError, match="Config file not found"):
        load_snapshot(tmp_path / "missing.yaml")


def test_invalid_yaml_rejected(tmp_path: Path) -> None:
    path = tmp_path / "almanac.yaml"
    path.write_text("calendars: [\n", encoding="utf-8")
    with pytest.raises(ParseError, match="Failed to parse YAML"):
        load_snapshot(path)


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    path = tmp_path / "almanac.yaml"
    path.write_text("- work\n", encoding="utf-8")
    with pytest.raises(ParseError, match="mapping at the top level"):
        load_snapshot(path)


def test_error_path_points_at_entry() -> None:
    config = _base_config()
    config["calendars"][0]["exclude"].append({"month": 2, "day": 31})
    with pytest.raises(ParseError, match=r"calendars\[0\]\.exclude\[1\]\.day"):
        snapshot_from_payload(config)
