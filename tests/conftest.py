# tests/conftest.py
import json
import os
import types

import pytest
from freezegun import freeze_time

from modules.gitlab_watch.lib import session


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls to GitHub/GitLab).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Logs and state go to per-test dirs so real files stay clean
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.setenv("STATE_PATH", str(tmp_path / "state" / "devwatch.db"))
    monkeypatch.delenv("ALERTS_DISPATCHER", raising=False)
    monkeypatch.delenv("ALERTS_EMAIL_TO", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GITLAB_TOKEN", raising=False)
    yield


@pytest.fixture(autouse=True)
def no_email_env(monkeypatch):
    monkeypatch.setenv("SEND_EMAIL", "0")
    monkeypatch.setenv("SCHEDULED_MODULES_DRY_RUN", "1")
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    yield


@pytest.fixture(autouse=True)
def _fresh_poll_session():
    """Pollers (and their baselines) are process-wide; start every test clean."""
    session.reset()
    yield
    session.reset()


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def sqlite_path(tmp_path):
    return str(tmp_path / "devwatch.db")


@pytest.fixture
def write_min_config(tmp_path, monkeypatch):
    cfg = {
        "timezone": "UTC",
        "state_path": str(tmp_path / "cfg-state.db"),
        "polling": {"merge_requests": 60, "pipelines": 30},
        "jobs": [
            {
                "id": "awesome-never",
                "module": "modules.awesome_scan",
                "trigger": {"date": "2099-01-01T00:00:00Z"},
                "kwargs": {"source_url": "https://github.com/sindresorhus/awesome"},
                "send_email": False,
                "summary": "pytest config",
            }
        ],
    }
    p = tmp_path / "config.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(p))
    return p


@pytest.fixture
def stub_emailer(monkeypatch):
    sent = {"messages": []}

    def send_html(**kwargs):
        sent["messages"].append(kwargs)
        return "<fake-message-id@example>"

    ns = types.SimpleNamespace(send_html=send_html, sent=sent)
    monkeypatch.setattr("service.emailer.send_html", ns.send_html, raising=True)
    monkeypatch.setattr("service.runner.send_html", ns.send_html, raising=True)
    return ns


class RecordingDispatcher:
    """AlertDispatcher double: records shows, configurable permission."""

    name = "recording"

    def __init__(self, permitted=True, grant_on_request=False, fail=False):
        self.permitted = permitted
        self.grant_on_request = grant_on_request
        self.fail = fail
        self.requests = 0
        self.shown = []

    def has_permission(self):
        return self.permitted

    def request_permission(self):
        self.requests += 1
        if self.grant_on_request:
            self.permitted = True
        return self.permitted

    def show(self, title, body):
        from service.errors import DeliveryFailed

        if self.fail:
            raise DeliveryFailed("display unavailable")
        self.shown.append((title, body))


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_dispatcher():
    return RecordingDispatcher


# ---------------------------------------------------------------------
# Fake HTTP for adapter tests
# ---------------------------------------------------------------------
class FakeResponse:
    def __init__(self, status=200, json_data=None, text="", headers=None):
        self.status_code = status
        self._json = json_data
        self.text = text if text or json_data is None else json.dumps(json_data)
        self.headers = headers or {}

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeSession:
    """requests.Session double routing by URL path suffix."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.calls = []
        self.closed = False

    def _match(self, url):
        path = url.split("://", 1)[-1]
        path = path[path.find("/"):] if "/" in path else "/"
        for suffix in sorted(self.routes, key=len, reverse=True):
            if path.endswith(suffix):
                return self.routes[suffix]
        return FakeResponse(404, text="not found")

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append(("GET", url, dict(params or {}), dict(headers or {})))
        resp = self._match(url)
        return resp(url, params) if callable(resp) else resp

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append(("POST", url, json, dict(headers or {})))
        resp = self._match(url)
        return resp(url, json) if callable(resp) else resp

    def close(self):
        self.closed = True


@pytest.fixture
def fake_http():
    return types.SimpleNamespace(Response=FakeResponse, Session=FakeSession)
