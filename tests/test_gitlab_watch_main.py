# tests/test_gitlab_watch_main.py
import pytest

import modules.gitlab_watch as gitlab_watch
from modules.gitlab_watch.lib import session
from modules.gitlab_watch.lib.config import ConfigError, Settings
from service.errors import PollFetchFailed
from service.notifications import NotificationHistory
from service.store import KeyValueStore


def _kwargs(sqlite_path, rows, **kw):
    out = {
        "kind": "pipelines",
        "adapter": "stub",
        "adapter_params": {"collections": {"pipelines": rows}},
        "sqlite_path": sqlite_path,
    }
    out.update(kw)
    return out


def _stub_adapter():
    poller = session.get_poller("pipelines", "stub:https://gitlab.com", lambda: None)
    return poller.adapter


def test_baseline_survives_between_runs(sqlite_path):
    first = gitlab_watch.run(**_kwargs(sqlite_path, [{"id": 1, "status": "running", "ref": "main"}]))
    assert first["events"] == []
    assert first["message"] == "1 pipelines (all)"

    # later scheduled runs reuse the session poller and its stub adapter
    _stub_adapter().set_collection("pipelines", [{"id": 1, "iid": 1, "status": "failed", "ref": "main"}])
    second = gitlab_watch.run(**_kwargs(sqlite_path, []))

    assert [e["title"] for e in second["events"]] == ["Pipeline Failed"]
    assert second["message"] == "1 pipelines (all), 1 new notification(s)"

    history = NotificationHistory(KeyValueStore(sqlite_path)).get_all()
    assert [(e.title, e.body) for e in history] == [("Pipeline Failed", "Pipeline #1 for main has failed")]


def test_fetch_failure_raises_and_keeps_baseline(sqlite_path):
    gitlab_watch.run(**_kwargs(sqlite_path, [{"id": 1, "status": "running"}]))
    adapter = _stub_adapter()

    adapter.errors["pipelines"] = "error"
    with pytest.raises(PollFetchFailed):
        gitlab_watch.run(**_kwargs(sqlite_path, []))

    adapter.errors.clear()
    again = gitlab_watch.run(**_kwargs(sqlite_path, []))
    assert again["events"] == []
    assert again["count"] == 1


def test_reset_forgets_baseline(sqlite_path):
    gitlab_watch.run(**_kwargs(sqlite_path, [{"id": 1, "status": "running"}]))
    session.reset()

    # a fresh poller starts with no baseline, so nothing is reported
    out = gitlab_watch.run(**_kwargs(sqlite_path, [{"id": 1, "status": "failed"}]))

    assert out["events"] == []


def test_merge_request_default_filter(sqlite_path):
    out = gitlab_watch.run(
        kind="merge_requests",
        adapter="stub",
        adapter_params={
            "collections": {
                "merge_requests": [
                    {"id": 1, "title": "a", "state": "opened"},
                    {"id": 2, "title": "b", "state": "merged"},
                ]
            }
        },
        sqlite_path=sqlite_path,
    )

    assert out["state_filter"] == "opened"
    assert out["count"] == 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"kind": "wikis"},
        {"kind": "pipelines", "state_filter": "merged"},
        {"kind": "issues"},  # gitlab adapter without a token
        {"kind": "issues", "adapter": "stub", "max_history": 0},
        {"kind": "issues", "adapter": "stub", "adapter_params": "nope"},
    ],
)
def test_settings_validation(kwargs):
    with pytest.raises(ConfigError):
        Settings.from_env_and_kwargs(kwargs)


def test_settings_hide_token_and_name_source():
    s = Settings.from_env_and_kwargs({"kind": "issues", "gitlab_token_env": "glpat-1", "gitlab_url": "https://git.example.com"})

    assert s.source == "https://git.example.com"
    assert s.adapter_kwargs() == {"url": "https://git.example.com", "token": "glpat-1"}
    assert "glpat-1" not in repr(s)
