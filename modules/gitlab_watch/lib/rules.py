"""
Per-kind change rules: which filters count as "live", which fields are
watched, and how creation/transition events are worded.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from service.notifications import TYPE_ISSUE, TYPE_MERGE_REQUEST, TYPE_PIPELINE

from .models import KIND_ISSUES, KIND_MERGE_REQUESTS, KIND_PIPELINES

# (record) -> (title, body)
CreationWording = Callable[[Any], tuple[str, str]]
# (record, old_value, new_value) -> (title, body)
TransitionWording = Callable[[Any, Any, Any], tuple[str, str]]


@dataclass(frozen=True)
class WatchedField:
    name: str
    wording: TransitionWording


@dataclass(frozen=True)
class WatchRule:
    kind: str
    event_type: str
    filters: tuple[str, ...]
    live_filters: frozenset[str]
    default_filter: str
    creation: CreationWording
    watched: tuple[WatchedField, ...]
    data: Callable[[Any], dict[str, Any]]
    # When set, the remote collection is always fetched and diffed whole and
    # the filter only narrows what is shown, matched on this field.
    display_field: str | None = None

    def is_live(self, state_filter: str) -> bool:
        return state_filter in self.live_filters

    def fetch_filter(self, state_filter: str) -> str:
        return "all" if self.display_field else state_filter

    def select(self, records: Iterable[Any], state_filter: str) -> list[Any]:
        if self.display_field is None or state_filter == "all":
            return list(records)
        return [r for r in records if getattr(r, self.display_field) == state_filter]


# ---- merge requests ---------------------------------------------------------


def _mr_created(mr) -> tuple[str, str]:
    return "New Merge Request", f"{mr.author}: {mr.title}"


def _mr_state(mr, old, new) -> tuple[str, str]:
    if new == "merged":
        title = "Merge Request Merged"
    elif new == "closed":
        title = "Merge Request Closed"
    elif new == "opened" and old == "closed":
        title = "Merge Request Reopened"
    else:
        title = "Merge Request Updated"
    return title, f"!{mr.iid} {mr.title} is now {new}"


# ---- issues -----------------------------------------------------------------


def _issue_created(issue) -> tuple[str, str]:
    return "New Issue", f"{issue.author}: {issue.title}"


def _issue_state(issue, old, new) -> tuple[str, str]:
    if new == "closed":
        title = "Issue Closed"
    elif new == "opened" and old == "closed":
        title = "Issue Reopened"
    else:
        title = "Issue State Changed"
    return title, f"#{issue.iid} {issue.title} is now {new}"


# ---- pipelines --------------------------------------------------------------


def _pipeline_created(p) -> tuple[str, str]:
    return "New Pipeline", f"Pipeline #{p.iid} for {p.ref} is {p.status}"


def _pipeline_status(p, old, new) -> tuple[str, str]:
    if new == "failed":
        return "Pipeline Failed", f"Pipeline #{p.iid} for {p.ref} has failed"
    if new == "success":
        return "Pipeline Succeeded", f"Pipeline #{p.iid} for {p.ref} has passed"
    return "Pipeline Status Changed", f"Pipeline #{p.iid} for {p.ref}: {old} -> {new}"


RULES: dict[str, WatchRule] = {
    KIND_MERGE_REQUESTS: WatchRule(
        kind=KIND_MERGE_REQUESTS,
        event_type=TYPE_MERGE_REQUEST,
        filters=("opened", "merged", "closed", "all"),
        live_filters=frozenset({"opened"}),
        default_filter="opened",
        creation=_mr_created,
        watched=(WatchedField("state", _mr_state),),
        data=lambda mr: {"mr_id": mr.id, "mr_iid": mr.iid, "project_id": mr.project_id},
    ),
    KIND_ISSUES: WatchRule(
        kind=KIND_ISSUES,
        event_type=TYPE_ISSUE,
        filters=("opened", "closed", "all"),
        live_filters=frozenset({"opened"}),
        default_filter="opened",
        creation=_issue_created,
        watched=(WatchedField("state", _issue_state),),
        data=lambda issue: {"issue_id": issue.id, "issue_iid": issue.iid, "project_id": issue.project_id},
    ),
    KIND_PIPELINES: WatchRule(
        kind=KIND_PIPELINES,
        event_type=TYPE_PIPELINE,
        filters=("all", "success", "failed", "running", "pending"),
        live_filters=frozenset({"all", "running", "pending"}),
        default_filter="all",
        creation=_pipeline_created,
        watched=(WatchedField("status", _pipeline_status),),
        data=lambda p: {"pipeline_id": p.id, "project_id": p.project_id, "ref": p.ref},
        display_field="status",
    ),
}


def get_rule(kind: str) -> WatchRule:
    key = (kind or "").strip().lower()
    if key not in RULES:
        raise KeyError(f"No watch rule for kind {kind!r}; expected one of {sorted(RULES)}.")
    return RULES[key]
