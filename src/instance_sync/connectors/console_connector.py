# src/instance_sync/connectors/console_connector.py

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..sync.notifier import EVENT_CHANGE_SET, EVENT_ERROR, EventChannel

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def format_event(payload: dict[str, Any]) -> str:
    """Render one notifier payload as a console line."""
    kind = payload.get("type")
    run = payload.get("run") or {}
    trigger = run.get("trigger", "?")

    if kind == EVENT_ERROR:
        err = payload.get("error") or {}
        stage = err.get("stage", "?")
        message = err.get("message", "")
        if stage == "fetch" and err.get("kind") == "permanent":
            return f"[SYNC] Fetch failed: {message}. Check /host and /msi settings."
        if stage == "fetch":
            return f"[SYNC] Fetch failed (will retry on next run): {message}"
        return f"[SYNC] Sync failed ({stage}): {message}"

    if kind == EVENT_CHANGE_SET:
        cs = payload.get("changeSet") or {}
        added = cs.get("added") or []
        updated = cs.get("updated") or []
        unchanged = cs.get("unchanged") or []
        errors = cs.get("errors") or []

        parts = [f"{len(added)} added", f"{len(updated)} updated", f"{len(unchanged)} unchanged"]
        line = f"[SYNC] {run.get('outcome', '?')} ({trigger}): " + ", ".join(parts)
        if added:
            line += f"\n  added: {', '.join(added)}"
        if updated:
            line += f"\n  updated: {', '.join(updated)}"
        for e in errors:
            line += f"\n  error: {e.get('id')}: {e.get('reason')}"
        return line

    return f"[SYNC] Unknown event: {payload!r}"


class EventPrinter:
    """Background consumer that prints notifier events as they arrive."""

    def __init__(self, channel: EventChannel, *, poll_seconds: float = 0.5) -> None:
        self._channel = channel
        self._poll = poll_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name="event-printer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2.0)

    def _loop(self) -> None:
        while not self._stop.is_set():
            payload = self._channel.get(timeout=self._poll)
            if payload is None:
                continue
            try:
                _print_ts(format_event(payload))
            except Exception:
                logger.exception("Failed to render event.")


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    printer: EventPrinter | None = None
    if state.events is not None:
        printer = EventPrinter(state.events)
        printer.start()

    try:
        while True:
            try:
                user_input = input(">>> ").strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                reply = command_registry.handle(state, user_input)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is None:
                reply = "Commands start with '/'. Use /help to list them."
            _print_ts(reply)
    finally:
        if printer is not None:
            printer.stop()

    logger.info("Console connector finished.")
