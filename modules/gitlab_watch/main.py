from __future__ import annotations

from typing import Any

from modules._shared.logging_bridge import activity as log_activity

from .lib import adapters, session
from .lib.config import Settings
from .lib.poller import ChangeDetectionPoller, PollOutcome


def run(**kwargs: Any) -> dict:
    """
    Entry point for the 'gitlab_watch' module: one poll cycle for one kind.

    Accepts kwargs (from scheduler/runner/CLI), including:
      kind: "merge_requests" | "issues" | "pipelines"
      state_filter: str                   # default per kind
      gitlab_url: str = "https://gitlab.com"
      gitlab_token_env: str = "GITLAB_TOKEN"
      adapter / adapter_params            # "gitlab" (default) or "stub"
      sqlite_path / alerts / max_history

    The poller for (kind, gitlab_url) is kept in the process session, so
    repeated scheduled runs diff against the previous cycle.

    Returns:
      meta dict (kind, state_filter, count, events, skipped, message).
    Raises:
      PollFetchFailed when the collection could not be fetched; the previous
      snapshot is left untouched.
    """
    settings = Settings.from_env_and_kwargs(kwargs)
    emitter = session.emitter(settings.sqlite_path, settings.alerts, settings.max_history)

    def _build() -> ChangeDetectionPoller:
        return ChangeDetectionPoller(
            settings.kind,
            adapters.get(settings.adapter)(**settings.adapter_kwargs()),
            source=settings.source,
            emit=emitter.emit,
            snapshots=session.snapshot_store(settings.sqlite_path),
        )

    poller = session.get_poller(settings.kind, settings.source, _build)
    outcome = poller.poll(settings.state_filter)

    log_activity({
        "component": "gitlab_watch.main",
        "op": "poll",
        "kind": settings.kind,
        "source": settings.source,
        "state_filter": settings.state_filter,
        "skipped": outcome.skipped,
        "error": repr(outcome.error) if outcome.error else None,
        "events": len(outcome.events),
    })

    if outcome.error is not None:
        raise outcome.error

    return {
        "kind": settings.kind,
        "state_filter": settings.state_filter,
        "source": settings.source,
        "count": len(outcome.collection),
        "events": [ev.to_dict() for ev in outcome.events],
        "skipped": outcome.skipped,
        "message": _summary_message(settings, outcome),
    }


def _summary_message(settings: Settings, outcome: PollOutcome) -> str:
    label = settings.kind.replace("_", " ")
    if outcome.skipped:
        return f"Previous {label} poll still running; skipped."
    msg = f"{len(outcome.collection)} {label} ({settings.state_filter})"
    if outcome.events:
        msg += f", {len(outcome.events)} new notification(s)"
    return msg
