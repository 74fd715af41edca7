# modules/gitlab_watch/lib/adapters/gitlab.py
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import requests

from modules._shared.http_client import HttpClient
from service.errors import FetchError, RateLimitedError

from ..models import KIND_ISSUES, KIND_MERGE_REQUESTS, KIND_PIPELINES, Issue, Job, MergeRequest, Pipeline
from .base import CollectionAdapter
from .registry import register

LOG = logging.getLogger(__name__)

DEFAULT_URL = "https://gitlab.com"


@register
class GitLabAdapter(CollectionAdapter):
    """
    GitLab REST v4 client for the polled collections plus a few actions.

    Merge requests and issues come from the instance-wide endpoints
    (scope=all). Pipelines have no such endpoint, so the latest pipeline of
    every project the token is a member of is collected one call at a time;
    projects whose pipelines cannot be read are skipped. That collection is
    always returned whole; narrowing it by status is left to the caller.

    A payload of the wrong shape is a FetchError like any other failed call.
    """

    kind = "gitlab"

    def __init__(
        self,
        url: str = DEFAULT_URL,
        token: str = "",
        *,
        client: HttpClient | None = None,
    ) -> None:
        self.api_base = (url or DEFAULT_URL).rstrip("/") + "/api/v4"
        self._client = client or HttpClient()
        if token:
            self._client.session.headers.update({"PRIVATE-TOKEN": token})

    # ---- capability -------------------------------------------------------
    def fetch_collection(self, kind: str, state_filter: str) -> list[Any]:
        if kind == KIND_MERGE_REQUESTS:
            rows = self._get_json("/merge_requests", params=self._state_params(state_filter))
            return _parse_rows(MergeRequest.from_api, rows, "/merge_requests")
        if kind == KIND_ISSUES:
            rows = self._get_json("/issues", params=self._state_params(state_filter))
            return _parse_rows(Issue.from_api, rows, "/issues")
        if kind == KIND_PIPELINES:
            return self._latest_pipelines()
        raise FetchError(f"Unsupported collection kind {kind!r}")

    # ---- extras -----------------------------------------------------------
    def test_connection(self) -> dict[str, Any]:
        """Return the token's user record (id, username, name)."""
        user = self._get_json("/user")
        return {"id": user.get("id"), "username": user.get("username"), "name": user.get("name")}

    def fetch_pipeline_jobs(self, project_id: int, pipeline_id: int) -> list[Job]:
        path = f"/projects/{project_id}/pipelines/{pipeline_id}/jobs"
        return _parse_rows(Job.from_api, self._get_json(path), path)

    def retry_pipeline(self, project_id: int, pipeline_id: int) -> Pipeline:
        data = self._post_json(f"/projects/{project_id}/pipelines/{pipeline_id}/retry")
        return Pipeline.from_api(data)

    def approve_merge_request(self, project_id: int, mr_iid: int) -> dict[str, Any]:
        return self._post_json(f"/projects/{project_id}/merge_requests/{mr_iid}/approve")

    def close(self) -> None:
        self._client.close()

    # ---- internals --------------------------------------------------------
    @staticmethod
    def _state_params(state_filter: str) -> dict[str, Any]:
        params: dict[str, Any] = {"scope": "all", "per_page": 100}
        if state_filter and state_filter != "all":
            params["state"] = state_filter
        return params

    def _latest_pipelines(self) -> list[Pipeline]:
        projects = self._get_json("/projects", params={"membership": "true", "per_page": 100})
        if not isinstance(projects, list):
            raise FetchError("GitLab returned an unexpected payload for /projects")
        out: list[Pipeline] = []
        for proj in projects:
            if not isinstance(proj, dict):
                raise FetchError("GitLab returned an unexpected project entry for /projects")
            pid = proj.get("id")
            try:
                rows = self._get_json(f"/projects/{pid}/pipelines", params={"per_page": 1})
            except RateLimitedError:
                raise
            except FetchError as e:
                LOG.debug("Skipping pipelines of project %s: %s", pid, e)
                continue
            name = proj.get("name_with_namespace") or proj.get("name")
            latest = _parse_rows(lambda d: Pipeline.from_api(d, project_name=name), rows, f"/projects/{pid}/pipelines")
            out.extend(latest[:1])
        out.sort(key=lambda p: p.updated_at or "", reverse=True)
        return out

    def _check(self, resp: requests.Response, path: str) -> None:
        if resp.ok:
            return
        if resp.status_code == 429:
            raise RateLimitedError(f"GitLab rate limit exceeded for {path}", status=429)
        raise FetchError(f"GitLab returned HTTP {resp.status_code} for {path}", status=resp.status_code)

    def _get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = self._client.get(self.api_base + path, params=params)
        except requests.RequestException as e:
            raise FetchError(f"GitLab request failed for {path}: {e}") from e
        self._check(resp, path)
        try:
            return resp.json()
        except ValueError as e:
            raise FetchError(f"GitLab returned invalid JSON for {path}") from e

    def _post_json(self, path: str) -> Any:
        try:
            resp = self._client.post(self.api_base + path)
        except requests.RequestException as e:
            raise FetchError(f"GitLab request failed for {path}: {e}") from e
        self._check(resp, path)
        try:
            return resp.json()
        except ValueError as e:
            raise FetchError(f"GitLab returned invalid JSON for {path}") from e


def _parse_rows(parse: Callable[[Any], Any], rows: Any, path: str) -> list[Any]:
    if not isinstance(rows, list):
        raise FetchError(f"GitLab returned an unexpected payload for {path}")
    try:
        return [parse(d) for d in rows]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise FetchError(f"GitLab returned a malformed record for {path}: {e!r}") from e
