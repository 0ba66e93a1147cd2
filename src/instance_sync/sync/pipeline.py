# src/instance_sync/sync/pipeline.py

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..errors import FetchError, StorageError
from .models import RunError, RunOutcome, RunTrigger, TaskRun

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)


def _outcome_for(run: TaskRun) -> RunOutcome:
    cs = run.change_set
    if cs is None or not cs.errors:
        return RunOutcome.SUCCESS
    if cs.processed == 0:
        return RunOutcome.FAILURE
    return RunOutcome.PARTIAL


async def run_sync_once(state: AppState, *, trigger: RunTrigger = RunTrigger.INTERVAL) -> TaskRun:
    """
    One fetch -> reconcile -> notify pass.

    Never raises: failures end up in the returned TaskRun and are published
    through the notifier's error path.
    Store calls run in a worker thread so the event loop stays responsive.
    """
    run = TaskRun(trigger=trigger)
    logger.info("Sync run started (trigger=%s)", trigger.value)

    try:
        host_settings = await asyncio.to_thread(state.store.get_settings)
        state.cache_host_settings(host_settings)

        records = await state.fetcher.fetch_instances(host_settings)

        run.change_set = await asyncio.to_thread(state.reconciler.reconcile, records)
        run.finish(_outcome_for(run))

    except FetchError as e:
        logger.warning("Fetch failed (%s): %s", e.kind.value, e)
        run.error = RunError(stage="fetch", kind=e.kind.value, message=str(e))
        run.finish(RunOutcome.FAILURE)

    except StorageError as e:
        logger.error("Storage failure during sync: %s", e)
        run.error = RunError(stage="storage", message=str(e))
        run.finish(RunOutcome.FAILURE)

    except Exception as e:
        logger.exception("Sync run crashed.")
        run.error = RunError(stage="internal", message=repr(e))
        run.finish(RunOutcome.FAILURE)

    logger.info(
        "Sync run finished (trigger=%s outcome=%s)",
        trigger.value,
        run.outcome.value if run.outcome else None,
    )

    state.record_run(run)
    state.notifier.notify(run)
    return run
