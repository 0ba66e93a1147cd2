# src/instance_sync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the sync scheduler in a background thread,
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import contextlib
import logging
import signal
import sys
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..errors import StorageError
from ..logging_setup import setup_logging
from ..sync.scheduler import start_scheduler_in_background

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    try:
        state = create_initial_state(settings=settings)
    except StorageError:
        logger.exception("Storage initialization failed; cannot continue.")
        return 1

    runner = start_scheduler_in_background(state, grace_seconds=settings.shutdown_grace_seconds)
    if runner is None:
        logger.error("Sync scheduler could not be started.")
        return 1

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    with contextlib.suppress(ValueError, OSError, AttributeError):
        # Some platforms may not support SIGTERM.
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Syncing in the background. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        runner.stop()
        runner.join(timeout=settings.shutdown_grace_seconds + 5.0)
        if state.events is not None:
            state.events.close()
        logger.info("Bye.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
