# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from instance_sync.core.state import AppState
from instance_sync.sync.notifier import ChannelNotifier, EventChannel
from instance_sync.sync.reconciler import Reconciler

from .fakes import FakeFetcher, SpyStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="instance-sync-test",
        log_level="DEBUG",
        console_enabled=False,
        event_queue_size=16,
        shutdown_grace_seconds=1.0,
        data_dir=tmp_path,
        db_path=tmp_path / "db.sqlite3",
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> SpyStore:
    s = SpyStore(settings.db_path)
    s.initialize()
    return s


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def state(settings: SimpleNamespace, store: SpyStore, fetcher: FakeFetcher) -> AppState:
    """
    AppState wired with a scripted fetcher.

    NOTE: We keep the real SQLite store and the real channel notifier here
    because their behaviour is part of what we want to test.
    """
    events = EventChannel(maxsize=settings.event_queue_size)
    return AppState(
        settings=settings,
        store=store,
        fetcher=fetcher,
        reconciler=Reconciler(store),
        notifier=ChannelNotifier(events),
        events=events,
    )
