from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable

import pytest

from almanac.store import Snapshot, snapshot_from_payload


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    def _make(
        calendars: Iterable[Dict[str, Any]] = (),
        jobs: Iterable[Dict[str, Any]] = (),
        owner: str = "alice",
        timezone_name: str = "UTC",
    ) -> Snapshot:
        return snapshot_from_payload(
            {
                "version": 1,
                "defaults": {"owner": owner, "timezone": timezone_name},
                "calendars": list(calendars),
                "jobs": list(jobs),
            }
        )

    return _make


@pytest.fixture
def reset_cli_logging():
    yield
    logger = logging.getLogger("almanac")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
