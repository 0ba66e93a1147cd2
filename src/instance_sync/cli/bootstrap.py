# src/instance_sync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- opens and initializes the store (fatal on failure),
- wires fetcher/reconciler/notifier into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import InstanceFetcher
from ..core.state import AppState
from ..sync.fetcher import HttpInstanceFetcher
from ..sync.notifier import ChannelNotifier, EventChannel
from ..sync.reconciler import Reconciler
from ..sync.store import InstanceStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, fetcher: InstanceFetcher | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Raises StorageInitError if the database cannot be prepared: nothing can be
    persisted without it, so the caller should treat it as fatal.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = InstanceStore(settings.db_path)
    store.initialize()

    # Without the console nothing reads the channel, so run results are only logged.
    events = EventChannel(maxsize=settings.event_queue_size) if settings.console_enabled else None

    state = AppState(
        settings=settings,
        store=store,
        fetcher=fetcher if fetcher is not None else HttpInstanceFetcher(),
        reconciler=Reconciler(store),
        notifier=ChannelNotifier(events),
        events=events,
    )
    state.cache_host_settings(store.get_settings())

    logger.info(
        "State ready (db=%s host=%s)",
        settings.db_path,
        state.host_settings.hostname if state.host_settings else None,
    )
    return state
