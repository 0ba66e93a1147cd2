# tests/test_reconciler.py

from __future__ import annotations

from instance_sync.sync.reconciler import Reconciler

from .fakes import SpyStore, rec


def test_add_then_update_scenario(store: SpyStore) -> None:
    reconciler = Reconciler(store)

    first = reconciler.reconcile([rec("A", "up"), rec("B", "down")])
    assert first.added == ["A", "B"]
    assert first.updated == []
    assert first.unchanged == []
    assert first.errors == []
    assert store.count_instances() == 2

    second = reconciler.reconcile([rec("A", "up"), rec("B", "up")])
    assert second.added == []
    assert second.updated == ["B"]
    assert second.unchanged == ["A"]
    assert store.get_instance("B").status == "up"


def test_unchanged_record_is_not_written(store: SpyStore) -> None:
    reconciler = Reconciler(store)

    reconciler.reconcile([rec("A", "up", version="24.1")])
    writes_after_first = list(store.upserts)

    again = reconciler.reconcile([rec("A", "up", version="24.1")])
    assert again.unchanged == ["A"]
    assert again.added == [] and again.updated == []
    assert store.upserts == writes_after_first


def test_meta_change_counts_as_update(store: SpyStore) -> None:
    reconciler = Reconciler(store)
    reconciler.reconcile([rec("A", meta={"site": "x"})])

    cs = reconciler.reconcile([rec("A", meta={"site": "y"})])
    assert cs.updated == ["A"]
    assert store.get_instance("A").meta == {"site": "y"}


def test_duplicate_ids_later_record_wins(store: SpyStore) -> None:
    cs = Reconciler(store).reconcile([rec("A", "up"), rec("B", "up"), rec("A", "down")])

    assert cs.added == ["A", "B"]
    assert store.count_instances() == 2
    assert store.get_instance("A").status == "down"


def test_ids_stay_unique_across_many_fetches(store: SpyStore) -> None:
    reconciler = Reconciler(store)
    fetches = [
        [rec("A"), rec("B")],
        [rec("B", "down"), rec("C")],
        [rec("A", "down"), rec("A", "up"), rec("C")],
        [],
    ]
    for batch in fetches:
        reconciler.reconcile(batch)

    ids = store.list_instance_ids()
    assert ids == sorted(set(ids)) == ["A", "B", "C"]


def test_partial_failure_keeps_processing(tmp_path) -> None:
    store = SpyStore(tmp_path / "db.sqlite3", fail_ids={"B"})
    store.initialize()

    cs = Reconciler(store).reconcile([rec("A"), rec("B"), rec("C"), rec("D")])

    assert cs.added == ["A", "C", "D"]
    assert [e.instance_id for e in cs.errors] == ["B"]
    assert "disk full" in cs.errors[0].reason
    assert store.get_instance("B") is None
    assert store.count_instances() == 3


def test_absent_instances_are_reported_not_deleted(store: SpyStore) -> None:
    reconciler = Reconciler(store)
    reconciler.reconcile([rec("A"), rec("B")])

    cs = reconciler.reconcile([rec("A")])
    assert cs.unchanged == ["A"]
    assert cs.missing == ["B"]
    assert store.get_instance("B") is not None
