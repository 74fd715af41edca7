# modules/awesome_scan/lib/adapters/github.py
from __future__ import annotations

import logging
import re
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup  # pip install beautifulsoup4 html5lib

from modules._shared.http_client import HttpClient
from service.errors import FetchError, RateLimitedError

from ..models import UNCATEGORIZED, Repository, WorkItem
from .base import ScanAdapter
from .registry import register

LOG = logging.getLogger(__name__)

API_BASE = "https://api.github.com"

_REPO_LINK_RE = re.compile(r"https?://github\.com/([^/\s]+)/([^/\s)#]+)")
_SKIP_OWNERS = {"sponsors"}


def parse_source_url(url: str) -> tuple[str, str]:
    """
    'https://github.com/sindresorhus/awesome' -> ('sindresorhus', 'awesome').
    The last two path segments win, so '/owner/repo/' and 'github.com/owner/repo.git' work too.
    """
    path = urlparse((url or "").strip()).path
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        raise ValueError(f"Invalid GitHub URL: {url!r}")
    owner, repo = parts[-2], parts[-1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not owner or not repo:
        raise ValueError(f"Invalid GitHub URL: {url!r}")
    return owner, repo


def extract_work_items(readme_html: str) -> list[WorkItem]:
    """
    Walk the rendered README in document order. h2/h3 headings set the current
    category; every github.com/<owner>/<repo> link becomes a WorkItem.
    Duplicates keep their first occurrence (and its category).
    """
    soup = BeautifulSoup(readme_html or "", "html5lib")
    category = UNCATEGORIZED
    seen: set[str] = set()
    out: list[WorkItem] = []

    for el in soup.find_all(["h2", "h3", "a"]):
        if el.name in ("h2", "h3"):
            text = el.get_text(" ", strip=True)
            if text:
                category = text
            continue

        href = (el.get("href") or "").strip()
        m = _REPO_LINK_RE.match(href)
        if not m:
            continue
        owner, name = m.group(1), m.group(2)
        if owner.lower() in _SKIP_OWNERS or "?" in name or "&" in name:
            continue
        if name.endswith(".git"):
            name = name[:-4]
        key = f"{owner}/{name}".lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(WorkItem(owner=owner, name=name, category=category))
    return out


def _is_rate_limited(resp: requests.Response) -> bool:
    if resp.status_code == 429:
        return True
    if resp.status_code != 403:
        return False
    if resp.headers.get("X-RateLimit-Remaining") == "0":
        return True
    return "rate limit" in (resp.text or "").lower()


def _check(resp: requests.Response, what: str) -> None:
    if resp.ok:
        return
    if _is_rate_limited(resp):
        raise RateLimitedError(f"GitHub rate limit exceeded while fetching {what}", status=resp.status_code)
    raise FetchError(f"GitHub returned HTTP {resp.status_code} for {what}", status=resp.status_code)


@register
class GitHubScanAdapter(ScanAdapter):
    """
    Scan an "awesome list" repository on GitHub.

    - Discovery reads the README rendered as HTML (one call).
    - Details come from /repos/{owner}/{name} (one call per item).
    - Enrichment walks the README's commit history (one call, up to 100 commits)
      and dates each repo by the oldest commit message that mentions it.

    A token is optional: anonymous calls get 60 requests/hour, which a large
    list exhausts quickly.
    """

    kind = "github"
    service_name = "GitHub"
    rate_limit_hint = (
        "You've hit the GitHub API rate limit. Add a GitHub token to increase "
        "the limit from 60 to 5,000 requests per hour."
    )

    def __init__(
        self,
        token: str | None = None,
        *,
        api_base: str = API_BASE,
        client: HttpClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or HttpClient()
        self._client.session.headers.update(headers)

    # ---- capability -------------------------------------------------------
    def enumerate_work_items(self, source_url: str) -> list[WorkItem]:
        try:
            owner, repo = parse_source_url(source_url)
        except ValueError as e:
            raise FetchError(str(e)) from e
        resp = self._get(
            f"{self.api_base}/repos/{owner}/{repo}/readme",
            headers={"Accept": "application/vnd.github.html"},
        )
        _check(resp, f"README of {owner}/{repo}")
        items = extract_work_items(resp.text)
        LOG.debug("Discovered %d repositories in %s/%s", len(items), owner, repo)
        return items

    def fetch_detail(self, item: WorkItem) -> Repository:
        resp = self._get(f"{self.api_base}/repos/{item.owner}/{item.name}")
        _check(resp, item.full_name)
        try:
            return Repository.from_api(resp.json())
        except (ValueError, KeyError, TypeError) as e:
            raise FetchError(f"Unexpected repository payload for {item.full_name}: {e}") from e

    def fetch_enrichment(self, source_url: str, items: list[WorkItem]) -> dict[str, str]:
        try:
            owner, repo = parse_source_url(source_url)
        except ValueError as e:
            raise FetchError(str(e)) from e
        resp = self._get(
            f"{self.api_base}/repos/{owner}/{repo}/commits",
            params={"path": "README.md", "per_page": 100},
        )
        if resp.status_code == 403:
            raise RateLimitedError("GitHub rate limit exceeded while fetching README history", status=403)
        if resp.status_code == 429:
            raise RateLimitedError("GitHub rate limit exceeded while fetching README history", status=429)
        if not resp.ok:
            LOG.info("README history unavailable for %s/%s (HTTP %s)", owner, repo, resp.status_code)
            return {}
        try:
            commits = resp.json()
        except ValueError as e:
            raise FetchError(f"Unexpected commit history payload: {e}") from e
        return added_dates_from_commits(commits, items)

    def close(self) -> None:
        self._client.close()

    # ---- internals --------------------------------------------------------
    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            return self._client.get(url, **kwargs)
        except requests.RequestException as e:
            raise FetchError(f"GitHub request failed: {e}") from e


def added_dates_from_commits(commits: list[dict], items: list[WorkItem]) -> dict[str, str]:
    """
    Oldest commit first; a commit dates an item when its message names
    'owner/name', or says 'add' and names the repo. First match wins.
    """
    dates: dict[str, str] = {}
    if not isinstance(commits, list):
        return dates
    for c in reversed(commits):
        commit = (c or {}).get("commit") or {}
        message = str(commit.get("message") or "").lower()
        when = ((commit.get("author") or {}).get("date")) or None
        if not message or not when:
            continue
        for item in items:
            if item.full_name in dates:
                continue
            if item.full_name.lower() in message or ("add" in message and item.name.lower() in message):
                dates[item.full_name] = when
    return dates
