from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from service.store import KeyValueStore

from .models import MODELS

LOG = logging.getLogger(__name__)

NAMESPACE = "snapshots"


def snapshot_key(kind: str, source: str) -> str:
    return f"{kind}@{source}"


def dedupe(records: Iterable[Any]) -> dict[Any, Any]:
    """identity -> record, first occurrence wins, input order preserved."""
    out: dict[Any, Any] = {}
    for rec in records:
        out.setdefault(rec.identity, rec)
    return out


class SnapshotStore:
    """
    Last known collection per (kind, source).

    The in-memory slot is the diff baseline for the running process; it is
    replaced wholesale, never mutated, and handed out read-only. The persisted
    copy (optional) is only for display after a restart.
    """

    def __init__(self, store: KeyValueStore | None = None) -> None:
        self._store = store
        self._slots: dict[tuple[str, str], Mapping[Any, Any]] = {}
        self._lock = threading.Lock()

    def current(self, kind: str, source: str) -> Mapping[Any, Any] | None:
        """The in-memory baseline, or None before the first successful cycle."""
        return self._slots.get((kind, source))

    def replace(self, kind: str, source: str, records: Iterable[Any]) -> Mapping[Any, Any]:
        snap = MappingProxyType(dedupe(records))
        with self._lock:
            self._slots[(kind, source)] = snap
        self._persist(kind, source, snap)
        return snap

    def load_persisted(self, kind: str, source: str) -> list[Any]:
        """Records saved by an earlier process. Corrupt or missing data -> []."""
        if self._store is None:
            return []
        model = MODELS.get(kind)
        if model is None:
            return []
        raw = self._store.get_json(NAMESPACE, snapshot_key(kind, source), default=[])
        if not isinstance(raw, list):
            return []
        out = []
        for d in raw:
            try:
                out.append(model.from_dict(d))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                LOG.warning("Skipping malformed %s snapshot entry: %r", kind, e)
        return out

    def _persist(self, kind: str, source: str, snap: Mapping[Any, Any]) -> None:
        if self._store is None:
            return
        try:
            self._store.set_json(NAMESPACE, snapshot_key(kind, source), [r.to_dict() for r in snap.values()])
        except sqlite3.Error as e:
            LOG.error("Could not persist %s snapshot for %s: %s", kind, source, e)
