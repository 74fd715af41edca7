"""
Process-wide poller registry.

Scheduled jobs call the module's run() once per cycle; the poller (and with
it the in-memory baseline and the busy flag) must survive between those
calls, so it lives here keyed by (kind, source).
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from service.alerts import build_dispatcher
from service.notifications import NotificationEmitter, NotificationHistory
from service.store import KeyValueStore

from .poller import ChangeDetectionPoller
from .snapshot import SnapshotStore

_LOCK = threading.Lock()
_POLLERS: dict[tuple[str, str], ChangeDetectionPoller] = {}
_SNAPSHOTS: dict[str, SnapshotStore] = {}
_EMITTERS: dict[tuple[str, str, int], NotificationEmitter] = {}


def snapshot_store(sqlite_path: str) -> SnapshotStore:
    with _LOCK:
        snaps = _SNAPSHOTS.get(sqlite_path)
        if snaps is None:
            snaps = _SNAPSHOTS[sqlite_path] = SnapshotStore(KeyValueStore(sqlite_path))
        return snaps


def emitter(sqlite_path: str, alerts: str | None, max_history: int) -> NotificationEmitter:
    """One emitter per (db, dispatcher), so permission is requested once per process."""
    key = (sqlite_path, alerts or "", max_history)
    with _LOCK:
        em = _EMITTERS.get(key)
        if em is None:
            history = NotificationHistory(KeyValueStore(sqlite_path), max_entries=max_history)
            em = _EMITTERS[key] = NotificationEmitter(history, build_dispatcher(alerts))
        return em


def get_poller(kind: str, source: str, factory: Callable[[], ChangeDetectionPoller]) -> ChangeDetectionPoller:
    with _LOCK:
        poller = _POLLERS.get((kind, source))
        if poller is None:
            poller = _POLLERS[(kind, source)] = factory()
        return poller


def reset() -> None:
    """Forget every poller, baseline and emitter (tests, config reloads)."""
    with _LOCK:
        for poller in _POLLERS.values():
            poller.adapter.close()
        _POLLERS.clear()
        _SNAPSHOTS.clear()
        _EMITTERS.clear()
