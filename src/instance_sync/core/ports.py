# src/instance_sync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the sync pipeline.

The pipeline depends on Protocols instead of concrete implementations.
This keeps the remote endpoint, storage and presentation layer swappable and
makes testing easier.
"""

from typing import Protocol

from ..sync.models import HostSettings, Instance, InstanceRecord, TaskRun, UpsertResult


class InstanceFetcher(Protocol):
    """One retrieval round against the configured remote endpoint."""

    async def fetch_instances(self, settings: HostSettings) -> list[InstanceRecord]: ...


class InstanceRepo(Protocol):
    # Settings (singleton)
    def get_settings(self) -> HostSettings: ...

    # Reconciler API
    def get_instance(self, instance_id: str) -> Instance | None: ...
    def upsert_instance(self, record: InstanceRecord, *, now_ts: float | None = None) -> UpsertResult: ...
    def list_instance_ids(self) -> list[str]: ...


class Notifier(Protocol):
    """
    Delivers the outcome of a run to the presentation layer.

    Fire-and-forget: implementations must not block and must not raise when
    nobody is listening.
    """

    def notify(self, run: TaskRun) -> None: ...
