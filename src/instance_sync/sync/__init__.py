"""
Sync subsystem.

Components:
- models.py: data structures (HostSettings, Instance, ChangeSet, TaskRun)
- store.py: SQLite-backed storage for settings and instances
- fetcher.py: HTTP retrieval of the current instance list
- reconciler.py: diff fetched records against the store, build a change-set
- notifier.py: one-way event channel to the presentation layer
- pipeline.py: one fetch -> reconcile -> notify pass
- scheduler.py: fixed-period timer with a skip-if-busy guard
"""
