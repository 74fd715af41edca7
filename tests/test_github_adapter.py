# tests/test_github_adapter.py
import pytest

from modules._shared.http_client import HttpClient
from modules.awesome_scan.lib.adapters import registry
from modules.awesome_scan.lib.adapters.github import (
    GitHubScanAdapter,
    added_dates_from_commits,
    extract_work_items,
    parse_source_url,
)
from modules.awesome_scan.lib.models import WorkItem
from service.errors import FetchError, RateLimitedError

README_HTML = """
<article>
  <p>Intro <a href="https://github.com/sponsors/someone">Sponsor</a></p>
  <a href="https://github.com/early/bird">before any heading</a>
  <h2>Command Line</h2>
  <ul>
    <li><a href="https://github.com/acme/tool">tool</a> - does things</li>
    <li><a href="https://github.com/acme/other.git">other</a></li>
    <li><a href="https://example.com/not/github">elsewhere</a></li>
  </ul>
  <h3>Databases</h3>
  <ul>
    <li><a href="https://github.com/db/store#readme">store</a></li>
    <li><a href="https://github.com/ACME/Tool">dup</a></li>
  </ul>
</article>
"""

REPO_JSON = {
    "id": 42,
    "name": "tool",
    "full_name": "acme/tool",
    "html_url": "https://github.com/acme/tool",
    "description": "does things",
    "stargazers_count": 120,
    "license": {"key": "mit", "name": "MIT License", "spdx_id": "MIT"},
    "topics": ["cli"],
}


def _adapter(fake_http, routes, token=None):
    session = fake_http.Session(routes)
    return GitHubScanAdapter(token=token, client=HttpClient(session=session)), session


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://github.com/sindresorhus/awesome", ("sindresorhus", "awesome")),
        ("https://github.com/sindresorhus/awesome/", ("sindresorhus", "awesome")),
        ("https://github.com/owner/list.git", ("owner", "list")),
    ],
)
def test_parse_source_url(url, expected):
    assert parse_source_url(url) == expected


@pytest.mark.parametrize("url", ["", "https://github.com/", "https://github.com/only-owner"])
def test_parse_source_url_rejects_short_paths(url):
    with pytest.raises(ValueError):
        parse_source_url(url)


def test_extract_work_items_tracks_headings_and_dedupes():
    items = extract_work_items(README_HTML)

    assert [(i.full_name, i.category) for i in items] == [
        ("early/bird", "Uncategorized"),
        ("acme/tool", "Command Line"),
        ("acme/other", "Command Line"),
        ("db/store", "Databases"),
    ]


def test_registry_knows_github_and_stub():
    assert {"github", "stub"} <= set(registry.all_kinds())
    assert registry.get("github") is GitHubScanAdapter


def test_enumerate_and_fetch_detail(fake_http):
    adapter, session = _adapter(
        fake_http,
        {
            "/repos/acme/awesome/readme": fake_http.Response(200, text=README_HTML),
            "/repos/acme/tool": fake_http.Response(200, json_data=REPO_JSON),
        },
        token="t0k",
    )

    items = adapter.enumerate_work_items("https://github.com/acme/awesome")
    repo = adapter.fetch_detail(items[1])

    assert len(items) == 4
    assert repo.full_name == "acme/tool"
    assert repo.license.spdx_id == "MIT"
    assert repo.topics == ("cli",)
    assert session.headers["Authorization"] == "Bearer t0k"
    assert session.calls[0][3] == {"Accept": "application/vnd.github.html"}


def test_anonymous_adapter_sends_no_authorization(fake_http):
    _, session = _adapter(fake_http, {})

    assert "Authorization" not in session.headers


@pytest.mark.parametrize(
    "response_kw",
    [
        {"status": 429},
        {"status": 403, "headers": {"X-RateLimit-Remaining": "0"}},
        {"status": 403, "text": "API rate limit exceeded for 1.2.3.4"},
    ],
)
def test_rate_limit_responses_raise_rate_limited(fake_http, response_kw):
    adapter, _ = _adapter(fake_http, {"/repos/acme/tool": fake_http.Response(**response_kw)})

    with pytest.raises(RateLimitedError):
        adapter.fetch_detail(WorkItem(owner="acme", name="tool"))


def test_plain_forbidden_and_not_found_are_fetch_errors(fake_http):
    adapter, _ = _adapter(fake_http, {"/repos/acme/tool": fake_http.Response(403, text="forbidden")})

    with pytest.raises(FetchError) as ei:
        adapter.fetch_detail(WorkItem(owner="acme", name="tool"))
    assert not isinstance(ei.value, RateLimitedError)

    with pytest.raises(FetchError) as ei:
        adapter.fetch_detail(WorkItem(owner="acme", name="missing"))
    assert ei.value.status == 404


def test_bad_source_url_is_fetch_error(fake_http):
    adapter, _ = _adapter(fake_http, {})

    with pytest.raises(FetchError):
        adapter.enumerate_work_items("https://github.com/")


def test_added_dates_use_oldest_matching_commit():
    items = [WorkItem("acme", "tool"), WorkItem("db", "store"), WorkItem("x", "never")]
    newest_first = [
        {"commit": {"message": "Update acme/tool description", "author": {"date": "2022-01-01T00:00:00Z"}}},
        {"commit": {"message": "Add store", "author": {"date": "2021-06-01T00:00:00Z"}}},
        {"commit": {"message": "Add acme/tool", "author": {"date": "2020-01-01T00:00:00Z"}}},
    ]

    dates = added_dates_from_commits(newest_first, items)

    assert dates == {"acme/tool": "2020-01-01T00:00:00Z", "db/store": "2021-06-01T00:00:00Z"}


def test_enrichment_forbidden_is_rate_limited_and_404_is_empty(fake_http):
    items = [WorkItem("acme", "tool")]
    limited, _ = _adapter(fake_http, {"/repos/acme/awesome/commits": fake_http.Response(403)})
    missing, _ = _adapter(fake_http, {})

    with pytest.raises(RateLimitedError):
        limited.fetch_enrichment("https://github.com/acme/awesome", items)
    assert missing.fetch_enrichment("https://github.com/acme/awesome", items) == {}


def test_enrichment_requests_readme_history(fake_http):
    commits = [{"commit": {"message": "add acme/tool", "author": {"date": "2019-01-01T00:00:00Z"}}}]
    adapter, session = _adapter(fake_http, {"/repos/acme/awesome/commits": fake_http.Response(200, json_data=commits)})

    dates = adapter.fetch_enrichment("https://github.com/acme/awesome", [WorkItem("acme", "tool")])

    assert dates == {"acme/tool": "2019-01-01T00:00:00Z"}
    assert session.calls[0][2] == {"path": "README.md", "per_page": 100}


@pytest.mark.live
def test_live_readme_discovery():
    adapter = GitHubScanAdapter()
    try:
        items = adapter.enumerate_work_items("https://github.com/sindresorhus/awesome")
    finally:
        adapter.close()
    assert items
