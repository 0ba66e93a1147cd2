# src/instance_sync/sync/notifier.py

from __future__ import annotations

"""
Notifier.

A one-way, best-effort channel from the sync core to the presentation layer.
Publishing never blocks: a full or closed channel drops the event.
"""

import logging
import queue
import threading
from typing import Any

from .models import TaskRun

logger = logging.getLogger(__name__)

EVENT_CHANGE_SET = "changeSet"
EVENT_ERROR = "error"


class EventChannel:
    """Bounded queue of event payloads. Safe to use across threads."""

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=max(0, int(maxsize)))
        self._closed = threading.Event()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def publish(self, payload: dict[str, Any]) -> bool:
        """Enqueue without waiting. Returns False if the event was dropped."""
        if self._closed.is_set():
            self.dropped += 1
            logger.debug("Event channel closed; dropping %s event.", payload.get("type"))
            return False
        try:
            self._queue.put_nowait(payload)
        except queue.Full:
            self.dropped += 1
            logger.warning("Event channel full; dropping %s event.", payload.get("type"))
            return False
        return True

    def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except queue.Empty:
                return out


def build_payload(run: TaskRun) -> dict[str, Any]:
    """Structured payload for one finished run: either a change-set or an error."""
    if run.error is not None:
        return {"type": EVENT_ERROR, "run": run.summary(), "error": run.error.to_payload()}

    change_set = run.change_set.to_payload() if run.change_set is not None else None
    return {"type": EVENT_CHANGE_SET, "run": run.summary(), "changeSet": change_set}


class ChannelNotifier:
    """Notifier backed by an EventChannel. A missing channel silently drops events."""

    def __init__(self, channel: EventChannel | None) -> None:
        self._channel = channel

    def notify(self, run: TaskRun) -> None:
        if self._channel is None:
            logger.debug("No presentation channel attached; dropping run result.")
            return
        try:
            self._channel.publish(build_payload(run))
        except Exception:
            logger.exception("Failed to publish run result.")
