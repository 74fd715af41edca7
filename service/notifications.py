# service/notifications.py
"""
Notification history and the emitter that feeds it.

History layout in the store: namespace "notifications", key "history", a JSON
array with the newest event first, capped at `max_entries` (oldest evicted).
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from .alerts import AlertDispatcher
from .errors import DeliveryFailed
from .store import KeyValueStore, now_iso

LOG = logging.getLogger(__name__)

HISTORY_NAMESPACE = "notifications"
HISTORY_KEY = "history"
DEFAULT_MAX_ENTRIES = 100

# Event types, one per automatically watched resource kind.
TYPE_MERGE_REQUEST = "gitlab_mr"
TYPE_ISSUE = "gitlab_issue"
TYPE_PIPELINE = "gitlab_pipeline"


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    resource_kind: str
    identity: str
    title: str
    body: str
    link: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=now_iso)
    read: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NotificationEvent:
        if not isinstance(d, dict):
            raise TypeError(f"event entry must be an object, got {type(d).__name__}")
        data = d.get("data") or {}
        if not isinstance(data, dict):
            raise TypeError(f"event data must be an object, got {type(data).__name__}")
        return cls(
            type=str(d.get("type") or ""),
            resource_kind=str(d.get("resource_kind") or ""),
            identity=str(d.get("identity") or ""),
            title=str(d.get("title") or ""),
            body=str(d.get("body") or ""),
            link=d.get("link"),
            data=dict(data),
            id=str(d.get("id") or uuid.uuid4().hex),
            created_at=str(d.get("created_at") or now_iso()),
            read=bool(d.get("read", False)),
        )


class NotificationHistory:
    """Bounded, newest-first event log persisted as one blob."""

    def __init__(self, store: KeyValueStore, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be >= 1")
        self._store = store
        self.max_entries = max_entries
        # Read-modify-write of the blob happens under this lock.
        self._lock = threading.Lock()

    def _load(self) -> list[NotificationEvent]:
        raw = self._store.get_json(HISTORY_NAMESPACE, HISTORY_KEY, default=[])
        if not isinstance(raw, list):
            LOG.warning("Notification history is not a list; treating as empty")
            return []
        out: list[NotificationEvent] = []
        for d in raw:
            try:
                out.append(NotificationEvent.from_dict(d))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                LOG.warning("Skipping malformed notification entry: %r", e)
        return out

    def _save(self, events: list[NotificationEvent]) -> None:
        self._store.set_json(HISTORY_NAMESPACE, HISTORY_KEY, [e.to_dict() for e in events])

    # ---- operations -------------------------------------------------------
    def add(self, event: NotificationEvent) -> None:
        with self._lock:
            events = [event, *self._load()]
            self._save(events[: self.max_entries])

    def get_all(self) -> list[NotificationEvent]:
        return self._load()

    def mark_read(self, event_id: str) -> bool:
        with self._lock:
            events = self._load()
            hit = False
            out = []
            for e in events:
                if e.id == event_id and not e.read:
                    e = replace(e, read=True)
                    hit = True
                out.append(e)
            if hit:
                self._save(out)
            return hit

    def mark_all_read(self) -> int:
        with self._lock:
            events = self._load()
            n = sum(1 for e in events if not e.read)
            if n:
                self._save([replace(e, read=True) for e in events])
            return n

    def delete(self, event_id: str) -> bool:
        with self._lock:
            events = self._load()
            kept = [e for e in events if e.id != event_id]
            if len(kept) == len(events):
                return False
            self._save(kept)
            return True

    def clear(self) -> None:
        with self._lock:
            self._save([])

    def unread_count(self) -> int:
        return sum(1 for e in self._load() if not e.read)


class NotificationEmitter:
    """
    Persist events, then deliver them through the alert dispatcher.

    emit() and alert() never raise on delivery problems: a failed or
    unpermitted alert is logged and the caller's cycle carries on.
    """

    def __init__(self, history: NotificationHistory | None, dispatcher: AlertDispatcher) -> None:
        self.history = history
        self.dispatcher = dispatcher
        self._permission_requested = False
        self._lock = threading.Lock()

    def emit(self, event: NotificationEvent) -> None:
        if self.history is not None:
            self.history.add(event)
        self._deliver(event.title, event.body)

    def alert(self, title: str, body: str) -> None:
        """Deliver without touching the history (scan warnings)."""
        self._deliver(title, body)

    def _permitted(self) -> bool:
        if self.dispatcher.has_permission():
            return True
        with self._lock:
            if self._permission_requested:
                return False
            self._permission_requested = True
        granted = self.dispatcher.request_permission()
        if not granted:
            LOG.info("Alert permission denied by %s; history only", type(self.dispatcher).__name__)
        return granted

    def _deliver(self, title: str, body: str) -> None:
        try:
            if self._permitted():
                self.dispatcher.show(title, body)
        except DeliveryFailed as e:
            LOG.warning("Alert delivery failed (%s): %s", title, e)
        except Exception as e:
            # dispatcher or its configuration is broken; still a delivery failure
            failure = DeliveryFailed(f"{type(e).__name__}: {e}")
            LOG.warning("Alert delivery failed (%s): %s", title, failure, exc_info=True)


def send_test_notifications(emitter: NotificationEmitter) -> list[NotificationEvent]:
    """Emit one sample event per automatic type (manual "does it work" check)."""
    samples = [
        NotificationEvent(
            type=TYPE_MERGE_REQUEST,
            resource_kind="merge_requests",
            identity="test-mr",
            title="New Merge Request",
            body="Test User: Example merge request",
            data={"test": True},
        ),
        NotificationEvent(
            type=TYPE_ISSUE,
            resource_kind="issues",
            identity="test-issue",
            title="New Issue",
            body="Test User: Example issue",
            data={"test": True},
        ),
        NotificationEvent(
            type=TYPE_PIPELINE,
            resource_kind="pipelines",
            identity="test-pipeline",
            title="Pipeline Failed",
            body="Pipeline #1 for main has failed",
            data={"test": True},
        ),
    ]
    for ev in samples:
        emitter.emit(ev)
    return samples
