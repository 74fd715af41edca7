from __future__ import annotations

import logging
import threading
import uuid

from service.store import KeyValueStore, now_iso

from .models import Repository, SavedList

LOG = logging.getLogger(__name__)

NAMESPACE = "saved_lists"
KEY = "lists"


class SavedListStore:
    """
    Named copies of scan results, persisted as one JSON array.

    A saved list is a snapshot of the records at save time; later scans never
    touch it unless `update()` is called for that list explicitly.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = threading.Lock()

    def _load(self) -> list[SavedList]:
        raw = self._store.get_json(NAMESPACE, KEY, default=[])
        if not isinstance(raw, list):
            LOG.warning("Saved lists blob is not a list; treating as empty")
            return []
        out: list[SavedList] = []
        for d in raw:
            try:
                out.append(SavedList.from_dict(d))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                LOG.warning("Skipping malformed saved list entry: %r", e)
        return out

    def _save(self, lists: list[SavedList]) -> None:
        self._store.set_json(NAMESPACE, KEY, [s.to_dict() for s in lists])

    # ---- operations ----
    def all(self) -> list[SavedList]:
        return self._load()

    def get(self, list_id: str) -> SavedList | None:
        return next((s for s in self._load() if s.id == list_id), None)

    def save(
        self,
        name: str,
        url: str,
        records: list[Repository],
        *,
        last_scanned: str | None = None,
        list_id: str | None = None,
    ) -> SavedList:
        """Insert a new list, or replace the one with `list_id` in place."""
        saved = SavedList(
            id=list_id or uuid.uuid4().hex,
            name=name,
            url=url,
            repositories=tuple(records),
            last_scanned=last_scanned or now_iso(),
            repository_count=len(records),
        )
        with self._lock:
            lists = self._load()
            for i, existing in enumerate(lists):
                if existing.id == saved.id:
                    lists[i] = saved
                    break
            else:
                lists.append(saved)
            self._save(lists)
        return saved

    def update(self, list_id: str, records: list[Repository], *, last_scanned: str | None = None) -> SavedList:
        """Replace the records of an existing list (rescan). KeyError if unknown."""
        current = self.get(list_id)
        if current is None:
            raise KeyError(f"No saved list with id {list_id!r}")
        return self.save(current.name, current.url, records, last_scanned=last_scanned, list_id=list_id)

    def delete(self, list_id: str) -> bool:
        with self._lock:
            lists = self._load()
            kept = [s for s in lists if s.id != list_id]
            if len(kept) == len(lists):
                return False
            self._save(kept)
            return True
