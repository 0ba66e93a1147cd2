# src/instance_sync/sync/reconciler.py

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from ..core.ports import InstanceRepo
from ..errors import ReconcileError, StorageError
from .models import ChangeSet, InstanceRecord, UpsertResult

logger = logging.getLogger(__name__)


def collapse_duplicates(records: Iterable[InstanceRecord]) -> list[InstanceRecord]:
    """
    Keep one record per instance id.

    A well-behaved remote never reports the same id twice in one fetch. If it
    does, the later record wins and the id keeps its first position.
    """
    by_id: dict[str, InstanceRecord] = {}
    for rec in records:
        if rec.instance_id in by_id:
            logger.warning("Duplicate instance id in fetch: %s (keeping the later record)", rec.instance_id)
        by_id[rec.instance_id] = rec
    return list(by_id.values())


class Reconciler:
    """
    Merge fetched records into the store.

    Per record: absent -> added (write), changed -> updated (write),
    equal -> unchanged (no write). Storage errors are captured per record and
    the rest of the batch is still processed.
    """

    def __init__(self, store: InstanceRepo) -> None:
        self._store = store

    def reconcile(self, records: Iterable[InstanceRecord], *, now_ts: float | None = None) -> ChangeSet:
        if now_ts is None:
            now_ts = time.time()

        batch = collapse_duplicates(records)
        change_set = ChangeSet()

        for rec in batch:
            try:
                existing = self._store.get_instance(rec.instance_id)
                if existing is not None and not existing.differs_from(rec):
                    change_set.unchanged.append(rec.instance_id)
                    continue

                result = self._store.upsert_instance(rec, now_ts=now_ts)
            except StorageError as e:
                logger.warning("Reconcile failed id=%s: %s", rec.instance_id, e)
                change_set.errors.append(ReconcileError(rec.instance_id, str(e)))
                continue

            if result == UpsertResult.CREATED:
                change_set.added.append(rec.instance_id)
            else:
                change_set.updated.append(rec.instance_id)

        seen = {rec.instance_id for rec in batch}
        try:
            change_set.missing = [i for i in self._store.list_instance_ids() if i not in seen]
        except StorageError:
            logger.warning("Could not list stored instances for the missing report.", exc_info=True)

        logger.info(
            "Reconciled %d record(s): added=%d updated=%d unchanged=%d missing=%d errors=%d",
            len(batch),
            len(change_set.added),
            len(change_set.updated),
            len(change_set.unchanged),
            len(change_set.missing),
            len(change_set.errors),
        )
        return change_set
