# modules/gitlab_watch/lib/__init__.py
from __future__ import annotations

# Importing the adapters package registers the built-in adapters.
from . import adapters as _adapters
from . import session
from .config import ConfigError, Settings
from .models import KIND_ISSUES, KIND_MERGE_REQUESTS, KIND_PIPELINES, Issue, Job, MergeRequest, Pipeline
from .poller import ChangeDetectionPoller, PollOutcome, diff_collections
from .rules import RULES, get_rule
from .snapshot import SnapshotStore

__all__ = [
    "KIND_ISSUES",
    "KIND_MERGE_REQUESTS",
    "KIND_PIPELINES",
    "RULES",
    "ChangeDetectionPoller",
    "ConfigError",
    "Issue",
    "Job",
    "MergeRequest",
    "Pipeline",
    "PollOutcome",
    "Settings",
    "SnapshotStore",
    "diff_collections",
    "get_rule",
    "session",
]
