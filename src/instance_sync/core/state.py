# src/instance_sync/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..sync.models import HostSettings, TaskRun
from ..sync.notifier import EventChannel
from ..sync.reconciler import Reconciler
from ..sync.store import InstanceStore
from .ports import InstanceFetcher, Notifier

if TYPE_CHECKING:
    from ..sync.scheduler import SchedulerBackgroundRunner


@dataclass
class AppState:
    """
    Explicit context for the sync pipeline.

    Owns the store handle, the settings cache and the scheduler handle, and is
    passed to the pipeline instead of being captured from module globals.
    """

    settings: Any  # app config (config.Settings or a test double)

    store: InstanceStore
    fetcher: InstanceFetcher
    reconciler: Reconciler
    notifier: Notifier
    events: EventChannel | None = None

    # Last settings row read by the pipeline or written by the user.
    host_settings: HostSettings | None = None
    last_run: TaskRun | None = None

    scheduler: SchedulerBackgroundRunner | None = None

    lock: threading.Lock = field(default_factory=threading.Lock)

    def cache_host_settings(self, value: HostSettings) -> None:
        with self.lock:
            self.host_settings = value

    def record_run(self, run: TaskRun) -> None:
        with self.lock:
            self.last_run = run
