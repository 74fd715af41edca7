"""
Change-detection poller: fetch, diff against the in-memory baseline, swap the
baseline, emit.

One poller per (kind, source). A cycle that is still running when the next
trigger arrives makes that trigger a no-op (skipped, not queued).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from modules._shared import logging_bridge
from service.errors import FetchError, PollFetchFailed
from service.notifications import NotificationEvent

from .adapters.base import CollectionAdapter
from .rules import WatchRule, get_rule
from .snapshot import SnapshotStore, dedupe

LOG = logging.getLogger(__name__)

EmitFn = Callable[[NotificationEvent], None]


@dataclass
class PollOutcome:
    collection: list[Any] = field(default_factory=list)
    events: list[NotificationEvent] = field(default_factory=list)
    error: PollFetchFailed | None = None
    skipped: bool = False


def _event(rule: WatchRule, rec: Any, title: str, body: str, transition: dict[str, Any]) -> NotificationEvent:
    return NotificationEvent(
        type=rule.event_type,
        resource_kind=rule.kind,
        identity=str(rec.identity),
        title=title,
        body=body,
        link=getattr(rec, "web_url", None) or None,
        data={**rule.data(rec), **transition},
    )


def diff_collections(
    baseline: Mapping[Any, Any] | None,
    current: Sequence[Any],
    rule: WatchRule,
    state_filter: str,
) -> list[NotificationEvent]:
    """
    Events for `current` against `baseline`: creations first, then
    transitions, each group in `current` order.

      - no baseline (first cycle)           -> nothing
      - new identity, live filter           -> one creation event
      - shared identity, watched field diff -> one transition event per field
      - identity gone                       -> nothing

    `current` is de-duplicated by identity first, so no (identity, transition)
    pair can be reported twice.
    """
    if baseline is None:
        return []
    live = rule.is_live(state_filter)
    created: list[NotificationEvent] = []
    changed: list[NotificationEvent] = []
    for ident, rec in dedupe(current).items():
        prev = baseline.get(ident)
        if prev is None:
            if live:
                title, body = rule.creation(rec)
                created.append(_event(rule, rec, title, body, {"transition": "created"}))
            continue
        for wf in rule.watched:
            old, new = getattr(prev, wf.name), getattr(rec, wf.name)
            if old == new:
                continue
            title, body = wf.wording(rec, old, new)
            changed.append(_event(rule, rec, title, body, {"transition": wf.name, "from": old, "to": new}))
    return created + changed


class ChangeDetectionPoller:
    def __init__(
        self,
        kind: str,
        adapter: CollectionAdapter,
        *,
        source: str = "default",
        rule: WatchRule | None = None,
        emit: EmitFn | None = None,
        snapshots: SnapshotStore | None = None,
    ) -> None:
        self.kind = kind
        self.source = source
        self.adapter = adapter
        self.rule = rule or get_rule(kind)
        self._emit = emit
        self.snapshots = snapshots or SnapshotStore()
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @property
    def baseline(self) -> Mapping[Any, Any] | None:
        return self.snapshots.current(self.kind, self.source)

    def poll(self, state_filter: str | None = None) -> PollOutcome:
        if not self._busy.acquire(blocking=False):
            LOG.info("Poll[%s@%s] still in flight; trigger dropped", self.kind, self.source)
            return PollOutcome(skipped=True)
        try:
            return self._cycle(state_filter or self.rule.default_filter)
        finally:
            self._busy.release()

    def _cycle(self, state_filter: str) -> PollOutcome:
        t0 = time.perf_counter_ns()
        baseline = self.baseline
        try:
            fresh = self.adapter.fetch_collection(self.kind, self.rule.fetch_filter(state_filter))
        except FetchError as e:
            err = PollFetchFailed(f"Could not fetch {self.kind}: {e}")
            logging_bridge.error({
                "component": "gitlab_watch.poller",
                "op": "fetch_failed",
                "kind": self.kind,
                "source": self.source,
                "state_filter": state_filter,
                "error": repr(e),
            })
            previous = self.rule.select(baseline.values(), state_filter) if baseline is not None else []
            return PollOutcome(collection=previous, error=err)

        events = diff_collections(baseline, fresh, self.rule, state_filter)
        committed = self.snapshots.replace(self.kind, self.source, fresh)

        if self._emit is not None:
            for ev in events:
                self._emit(ev)

        logging_bridge.activity({
            "component": "gitlab_watch.poller",
            "op": "cycle",
            "kind": self.kind,
            "source": self.source,
            "state_filter": state_filter,
            "first_cycle": baseline is None,
            "count": len(committed),
            "events": [ev.title for ev in events],
            "total_us": int((time.perf_counter_ns() - t0) // 1000),
        })
        return PollOutcome(collection=self.rule.select(committed.values(), state_filter), events=events)
