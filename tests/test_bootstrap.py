# tests/test_bootstrap.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from instance_sync.cli.bootstrap import create_initial_state
from instance_sync.errors import StorageInitError
from instance_sync.sync.models import HostSettings, RunOutcome, RunTrigger, TaskRun

from .fakes import FakeFetcher


def test_create_initial_state_initializes_store(settings) -> None:
    settings.console_enabled = True
    state = create_initial_state(settings=settings, fetcher=FakeFetcher())

    assert settings.db_path.exists()
    assert state.host_settings == HostSettings()
    assert state.events is not None
    assert state.scheduler is None


def test_headless_state_has_no_event_channel(settings, caplog) -> None:
    state = create_initial_state(settings=settings, fetcher=FakeFetcher())

    assert state.events is None

    # Results with no reader are discarded instead of filling a queue.
    run = TaskRun(trigger=RunTrigger.INTERVAL)
    run.finish(RunOutcome.SUCCESS)
    with caplog.at_level(logging.DEBUG):
        for _ in range(settings.event_queue_size + 1):
            state.notifier.notify(run)

    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_create_initial_state_fails_loudly_on_bad_db(settings, tmp_path: Path) -> None:
    bad = tmp_path / "not-a-db"
    bad.mkdir()
    settings.db_path = bad

    with pytest.raises(StorageInitError):
        create_initial_state(settings=settings, fetcher=FakeFetcher())
