# src/instance_sync/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..core.state import AppState
from ..errors import StorageError

CommandHandler = Callable[[AppState, list[str]], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /status, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return handler(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    try:
        hs = state.store.get_settings()
        total = state.store.count_instances()
    except StorageError as e:
        return f"Storage error: {e}"

    scheduler = state.scheduler.scheduler.state.value if state.scheduler else "not started"
    run = state.last_run
    if run is None:
        last = "none yet"
    else:
        outcome = run.outcome.value if run.outcome else "?"
        last = f"{outcome} ({run.trigger.value}, finished {_fmt_ts(run.finished_at)})"

    return (
        "Status:\n"
        f"  Host: {hs.hostname}\n"
        f"  Extract MSI: {'ON' if hs.extract_msi else 'OFF'}\n"
        f"  Scheduler: {scheduler}\n"
        f"  Last run: {last}\n"
        f"  Stored instances: {total}"
    )


def cmd_instances(state: AppState, args: list[str]) -> str:
    try:
        items = state.store.list_instances()
    except StorageError as e:
        return f"Storage error: {e}"

    if not items:
        return "No instances stored yet."

    lines = [f"Instances ({len(items)}):"]
    for inst in items:
        label = f" {inst.name}" if inst.name else ""
        version = f" v{inst.version}" if inst.version else ""
        lines.append(f"  {inst.instance_id}{label}{version} [{inst.status}] updated {_fmt_ts(inst.updated_at)}")
    return "\n".join(lines)


def cmd_host(state: AppState, args: list[str]) -> str:
    """
    /host         -> show configured hostname
    /host <name>  -> change hostname (used from the next run on)
    """
    if not args:
        try:
            return f"Host is {state.store.get_settings().hostname}. Use /host <name> to change it."
        except StorageError as e:
            return f"Storage error: {e}"

    try:
        hs = state.store.update_settings(hostname=args[0])
    except ValueError as e:
        return f"Invalid hostname: {e}"
    except StorageError as e:
        return f"Storage error: {e}"

    state.cache_host_settings(hs)
    return f"Host set to {hs.hostname}. It will be used from the next sync run."


def cmd_msi(state: AppState, args: list[str]) -> str:
    """
    /msi          -> show status
    /msi on|off   -> toggle MSI extraction
    """
    if not args:
        try:
            on = state.store.get_settings().extract_msi
        except StorageError as e:
            return f"Storage error: {e}"
        return f"Extract MSI is {'ON' if on else 'OFF'}. Use /msi on or /msi off."

    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        value = True
    elif arg in ("off", "0", "false", "no"):
        value = False
    else:
        return "Usage: /msi on or /msi off."

    try:
        hs = state.store.update_settings(extract_msi=value)
    except StorageError as e:
        return f"Storage error: {e}"

    state.cache_host_settings(hs)
    return f"Extract MSI {'enabled' if hs.extract_msi else 'disabled'}."


def cmd_sync(state: AppState, args: list[str]) -> str:
    if state.scheduler is None:
        return "Scheduler is not running."

    logger.debug("Manual sync requested.")
    state.scheduler.trigger_now()
    return "Sync requested (skipped if a run is already in progress)."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show host, scheduler state and last run.")
registry.register("instances", cmd_instances, help_text="List stored instances.", aliases=["ls"])
registry.register("host", cmd_host, help_text="Show or set the remote host: /host <name>.")
registry.register("msi", cmd_msi, help_text="Toggle MSI extraction: /msi on | /msi off.")
registry.register("sync", cmd_sync, help_text="Run a sync now.")
