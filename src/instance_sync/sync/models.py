# src/instance_sync/sync/models.py

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..errors import ReconcileError

DEFAULT_HOSTNAME = "localhost"


@dataclass(slots=True, frozen=True)
class HostSettings:
    """Singleton settings row: where to fetch from and how."""

    hostname: str = DEFAULT_HOSTNAME
    extract_msi: bool = False


@dataclass(slots=True, frozen=True)
class InstanceRecord:
    """One instance as reported by the remote endpoint."""

    instance_id: str
    status: str = "unknown"
    name: str | None = None
    version: str | None = None
    url: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def attributes(self) -> tuple[Any, ...]:
        return (self.status, self.name, self.version, self.url, self.meta)


@dataclass(slots=True)
class Instance:
    """Stored instance row."""

    instance_id: str
    status: str
    name: str | None
    version: str | None
    url: str | None
    meta: dict[str, Any]
    created_at: float
    updated_at: float

    def attributes(self) -> tuple[Any, ...]:
        return (self.status, self.name, self.version, self.url, self.meta)

    def differs_from(self, record: InstanceRecord) -> bool:
        return self.attributes() != record.attributes()


class UpsertResult(StrEnum):
    CREATED = "created"
    UPDATED = "updated"


@dataclass(slots=True)
class ChangeSet:
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    # Stored ids absent from the fetch. Informational only: nothing is deleted.
    missing: list[str] = field(default_factory=list)
    errors: list[ReconcileError] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.added) + len(self.updated) + len(self.unchanged)

    def to_payload(self) -> dict[str, Any]:
        return {
            "added": list(self.added),
            "updated": list(self.updated),
            "unchanged": list(self.unchanged),
            "missing": list(self.missing),
            "errors": [e.to_payload() for e in self.errors],
        }


class RunOutcome(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class RunTrigger(StrEnum):
    STARTUP = "startup"
    INTERVAL = "interval"
    MANUAL = "manual"


@dataclass(slots=True)
class RunError:
    """Structured error detail for a failed run."""

    stage: str  # "fetch" | "storage" | "internal"
    message: str
    kind: str | None = None  # FetchErrorKind value for fetch errors

    def to_payload(self) -> dict[str, Any]:
        return {"stage": self.stage, "kind": self.kind, "message": self.message}


@dataclass(slots=True)
class TaskRun:
    """
    One scheduler tick.

    Lives only for the duration of a pipeline execution and is discarded after
    the notifier has published it.
    """

    trigger: RunTrigger
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    outcome: RunOutcome | None = None
    change_set: ChangeSet | None = None
    error: RunError | None = None

    def finish(self, outcome: RunOutcome) -> None:
        self.outcome = outcome
        self.finished_at = time.time()

    def summary(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "outcome": self.outcome.value if self.outcome else None,
        }
