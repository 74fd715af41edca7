# tests/test_poller.py
import threading

import pytest

from modules.gitlab_watch.lib.adapters.base import CollectionAdapter
from modules.gitlab_watch.lib.adapters.stub import StubCollectionAdapter
from modules.gitlab_watch.lib.models import KIND_ISSUES, KIND_MERGE_REQUESTS, KIND_PIPELINES, MergeRequest, Pipeline
from modules.gitlab_watch.lib.poller import ChangeDetectionPoller, diff_collections
from modules.gitlab_watch.lib.rules import get_rule
from modules.gitlab_watch.lib.snapshot import SnapshotStore
from service.errors import PollFetchFailed
from service.store import KeyValueStore


def _pipeline(pid, status, ref="main"):
    return {"id": pid, "iid": pid, "project_id": 7, "status": status, "ref": ref, "web_url": f"https://gl/p/{pid}"}


def _mr(mid, state, title="Fix bug"):
    return {"id": mid, "iid": mid, "project_id": 7, "title": title, "state": state, "author": {"name": "Dana"}}


def _poller(kind, collections, emitted=None, **kw):
    adapter = StubCollectionAdapter(collections={kind: collections})
    poller = ChangeDetectionPoller(kind, adapter, emit=emitted.append if emitted is not None else None, **kw)
    return poller, adapter


# ----------------------------------------------------------------------
# Concrete pipeline scenario
# ----------------------------------------------------------------------
def test_pipeline_scenario_creation_then_transition():
    emitted = []
    poller, adapter = _poller(KIND_PIPELINES, [_pipeline(1, "running")], emitted)

    first = poller.poll("all")
    assert first.events == []  # first cycle only establishes the baseline

    adapter.set_collection(KIND_PIPELINES, [_pipeline(1, "success"), _pipeline(2, "pending")])
    second = poller.poll("all")

    assert [(e.identity, e.data["transition"]) for e in second.events] == [("2", "created"), ("1", "status")]
    by_kind = {e.data["transition"]: e for e in second.events}
    assert by_kind["created"].title == "New Pipeline"
    assert by_kind["status"].title == "Pipeline Succeeded"
    assert by_kind["status"].data["from"] == "running"
    assert by_kind["status"].data["to"] == "success"
    assert emitted == second.events

    baseline = poller.baseline
    assert {k: v.status for k, v in baseline.items()} == {1: "success", 2: "pending"}


def test_creations_come_before_transitions():
    baseline = {1: Pipeline.from_api(_pipeline(1, "running"))}
    current = [Pipeline.from_api(_pipeline(1, "success")), Pipeline.from_api(_pipeline(2, "pending"))]

    events = diff_collections(baseline, current, get_rule(KIND_PIPELINES), "all")

    assert [e.identity for e in events] == ["2", "1"]
    assert [e.title for e in events] == ["New Pipeline", "Pipeline Succeeded"]


@pytest.mark.parametrize(
    "new_status,title",
    [("failed", "Pipeline Failed"), ("success", "Pipeline Succeeded"), ("canceled", "Pipeline Status Changed")],
)
def test_pipeline_transition_wording_follows_new_value(new_status, title):
    baseline = {1: Pipeline.from_api(_pipeline(1, "running"))}

    events = diff_collections(baseline, [Pipeline.from_api(_pipeline(1, new_status))], get_rule(KIND_PIPELINES), "all")

    assert len(events) == 1
    assert events[0].title == title


# ----------------------------------------------------------------------
# Diff properties
# ----------------------------------------------------------------------
def test_historical_filter_yields_no_creation_events():
    baseline = {1: MergeRequest.from_api(_mr(1, "merged"))}
    current = [MergeRequest.from_api(_mr(1, "merged")), MergeRequest.from_api(_mr(2, "merged"))]

    events = diff_collections(baseline, current, get_rule(KIND_MERGE_REQUESTS), "merged")

    assert events == []


def test_vanished_identities_yield_nothing():
    baseline = {1: MergeRequest.from_api(_mr(1, "opened")), 2: MergeRequest.from_api(_mr(2, "opened"))}

    events = diff_collections(baseline, [MergeRequest.from_api(_mr(1, "opened"))], get_rule(KIND_MERGE_REQUESTS), "opened")

    assert events == []


def test_no_baseline_yields_nothing_but_empty_baseline_yields_creations():
    rule = get_rule(KIND_MERGE_REQUESTS)
    current = [MergeRequest.from_api(_mr(1, "opened")), MergeRequest.from_api(_mr(2, "opened"))]

    assert diff_collections(None, current, rule, "opened") == []
    created = diff_collections({}, current, rule, "opened")
    assert [e.title for e in created] == ["New Merge Request", "New Merge Request"]
    assert created[0].body == "Dana: Fix bug"


def test_duplicate_identity_in_one_fetch_is_reported_once():
    rule = get_rule(KIND_MERGE_REQUESTS)
    current = [MergeRequest.from_api(_mr(5, "opened")), MergeRequest.from_api(_mr(5, "opened", title="dup"))]

    events = diff_collections({}, current, rule, "opened")

    assert len(events) == 1
    assert events[0].body == "Dana: Fix bug"


@pytest.mark.parametrize("new_state,title", [("merged", "Merge Request Merged"), ("closed", "Merge Request Closed")])
def test_merge_request_state_wording(new_state, title):
    baseline = {1: MergeRequest.from_api(_mr(1, "opened"))}

    events = diff_collections(baseline, [MergeRequest.from_api(_mr(1, new_state))], get_rule(KIND_MERGE_REQUESTS), "all")

    assert [e.title for e in events] == [title]
    assert events[0].type == "gitlab_mr"


def test_issue_reopened_wording():
    poller, adapter = _poller(KIND_ISSUES, [_mr(3, "closed", title="Crash")])
    poller.poll("all")
    adapter.set_collection(KIND_ISSUES, [_mr(3, "opened", title="Crash")])

    outcome = poller.poll("all")

    assert [e.title for e in outcome.events] == ["Issue Reopened"]
    assert outcome.events[0].body == "#3 Crash is now opened"


def test_rediff_with_unchanged_collection_is_quiet():
    poller, _ = _poller(KIND_PIPELINES, [_pipeline(1, "running"), _pipeline(2, "failed")])
    poller.poll("all")

    assert poller.poll("all").events == []
    assert poller.poll("all").events == []


# ----------------------------------------------------------------------
# Failure and concurrency
# ----------------------------------------------------------------------
def test_fetch_failure_keeps_baseline_and_emits_nothing():
    emitted = []
    poller, adapter = _poller(KIND_PIPELINES, [_pipeline(1, "running")], emitted)
    poller.poll("all")
    before = poller.baseline

    adapter.errors[KIND_PIPELINES] = "error"
    outcome = poller.poll("all")

    assert isinstance(outcome.error, PollFetchFailed)
    assert outcome.events == []
    assert [p.status for p in outcome.collection] == ["running"]
    assert poller.baseline is before
    assert emitted == []

    # recovery diffs against the untouched baseline
    adapter.errors.clear()
    adapter.set_collection(KIND_PIPELINES, [_pipeline(1, "failed")])
    assert [e.title for e in poller.poll("all").events] == ["Pipeline Failed"]


def test_status_filter_does_not_hide_transitions():
    poller, adapter = _poller(KIND_PIPELINES, [_pipeline(1, "running"), _pipeline(2, "success")])

    first = poller.poll("running")
    assert [p.id for p in first.collection] == [1]

    adapter.set_collection(KIND_PIPELINES, [_pipeline(1, "success"), _pipeline(2, "success")])
    second = poller.poll("running")

    assert [e.title for e in second.events] == ["Pipeline Succeeded"]
    assert second.collection == []
    assert {k: v.status for k, v in poller.baseline.items()} == {1: "success", 2: "success"}
    assert adapter.calls == [(KIND_PIPELINES, "all"), (KIND_PIPELINES, "all")]


def test_switching_status_filter_is_quiet():
    poller, _ = _poller(KIND_PIPELINES, [_pipeline(1, "running"), _pipeline(2, "success"), _pipeline(3, "failed")])
    poller.poll("running")

    switched = poller.poll("all")

    assert switched.events == []
    assert [p.id for p in switched.collection] == [1, 2, 3]


def test_fetch_failure_under_status_filter_returns_filtered_baseline():
    poller, adapter = _poller(KIND_PIPELINES, [_pipeline(1, "running"), _pipeline(2, "failed")])
    poller.poll("all")

    adapter.errors[KIND_PIPELINES] = "error"
    outcome = poller.poll("failed")

    assert isinstance(outcome.error, PollFetchFailed)
    assert [p.id for p in outcome.collection] == [2]


def test_malformed_rows_become_poll_fetch_failed():
    emitted = []
    poller, adapter = _poller(KIND_MERGE_REQUESTS, [_mr(1, "opened")], emitted)
    poller.poll("opened")
    before = poller.baseline

    adapter.set_collection(KIND_MERGE_REQUESTS, [{"iid": 3, "title": "no id"}])
    outcome = poller.poll("opened")

    assert isinstance(outcome.error, PollFetchFailed)
    assert poller.baseline is before
    assert emitted == []


class _BlockingAdapter(CollectionAdapter):
    kind = "blocking"

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def fetch_collection(self, kind, state_filter):
        self.calls += 1
        self.entered.set()
        self.release.wait(timeout=5)
        return []


def test_trigger_during_in_flight_cycle_is_dropped():
    adapter = _BlockingAdapter()
    poller = ChangeDetectionPoller(KIND_PIPELINES, adapter)
    results = []

    t = threading.Thread(target=lambda: results.append(poller.poll("all")))
    t.start()
    assert adapter.entered.wait(timeout=5)
    assert poller.busy is True

    skipped = poller.poll("all")

    adapter.release.set()
    t.join(timeout=5)
    assert skipped.skipped is True
    assert adapter.calls == 1
    assert results[0].skipped is False
    assert poller.busy is False


# ----------------------------------------------------------------------
# Snapshot persistence (display only)
# ----------------------------------------------------------------------
def test_snapshot_is_persisted_but_not_used_as_baseline(sqlite_path):
    store = KeyValueStore(sqlite_path)
    poller, _ = _poller(KIND_PIPELINES, [_pipeline(1, "running")], snapshots=SnapshotStore(store))
    poller.poll("all")

    fresh = SnapshotStore(store)
    assert [p.id for p in fresh.load_persisted(KIND_PIPELINES, "default")] == [1]
    assert fresh.current(KIND_PIPELINES, "default") is None


def test_corrupt_persisted_snapshot_reads_as_empty(sqlite_path):
    store = KeyValueStore(sqlite_path)
    store.set("snapshots", "pipelines@default", b"{not json")

    assert SnapshotStore(store).load_persisted(KIND_PIPELINES, "default") == []


def test_wrong_shape_snapshot_entries_are_skipped(sqlite_path):
    store = KeyValueStore(sqlite_path)
    store.set_json("snapshots", "pipelines@default", ["oops", {"iid": 1}, Pipeline.from_api(_pipeline(3, "failed")).to_dict()])

    assert [p.id for p in SnapshotStore(store).load_persisted(KIND_PIPELINES, "default")] == [3]


def test_baseline_is_read_only():
    poller, _ = _poller(KIND_PIPELINES, [_pipeline(1, "running")])
    poller.poll("all")

    with pytest.raises(TypeError):
        poller.baseline[99] = None
