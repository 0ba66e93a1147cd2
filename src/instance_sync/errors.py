# src/instance_sync/errors.py

"""
Error taxonomy.

Storage errors come from the SQLite store, FetchError from the remote fetcher,
ReconcileError is per-record and never aborts a batch.
"""

from __future__ import annotations

from enum import StrEnum


class InstanceSyncError(Exception):
    """Base class for all errors raised by this package."""


class StorageError(InstanceSyncError):
    pass


class StorageInitError(StorageError):
    """Schema files unreadable or the database cannot be opened."""


class StorageReadError(StorageError):
    pass


class StorageWriteError(StorageError):
    pass


class FetchErrorKind(StrEnum):
    # Network/timeout: the next scheduled tick retries.
    TRANSIENT = "transient"
    # Configuration problem: surfaced to the user until settings are fixed.
    PERMANENT = "permanent"


class FetchError(InstanceSyncError):
    def __init__(self, message: str, *, kind: FetchErrorKind) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind == FetchErrorKind.TRANSIENT

    def __repr__(self) -> str:
        return f"FetchError({str(self)!r}, kind={self.kind.value})"


class ReconcileError(InstanceSyncError):
    """A single record that could not be reconciled."""

    def __init__(self, instance_id: str, reason: str) -> None:
        super().__init__(f"{instance_id}: {reason}")
        self.instance_id = instance_id
        self.reason = reason

    def to_payload(self) -> dict[str, str]:
        return {"id": self.instance_id, "reason": self.reason}
