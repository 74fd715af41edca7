from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from service.notifications import DEFAULT_MAX_ENTRIES
from service.store import DEFAULT_STATE_PATH

from .adapters.gitlab import DEFAULT_URL
from .rules import RULES


class ConfigError(ValueError):
    """Raised when provided kwargs cannot form a valid Settings."""


@dataclass
class Settings:
    """
    Canonical configuration for one 'gitlab_watch' poll cycle.

    `gitlab_token_env` holds the RESOLVED token (the runner expands *_env
    kwargs); it is passed to the adapter and never logged.
    """

    kind: str = ""
    state_filter: str = ""
    gitlab_url: str = DEFAULT_URL
    gitlab_token_env: str = field(default="", repr=False)

    adapter: str = "gitlab"
    adapter_params: dict[str, Any] = field(default_factory=dict)

    sqlite_path: str = DEFAULT_STATE_PATH
    alerts: str | None = None
    max_history: int = DEFAULT_MAX_ENTRIES

    @property
    def source(self) -> str:
        """Snapshot/session key for this instance."""
        return self.gitlab_url if self.adapter == "gitlab" else f"{self.adapter}:{self.gitlab_url}"

    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Expected kwargs:

            kind: "merge_requests" | "issues" | "pipelines"   # REQUIRED
            state_filter: str        # default: "opened" (MRs/issues), "all" (pipelines)
            gitlab_url: str = "https://gitlab.com"
            gitlab_token_env: str    # resolved token; required for the gitlab adapter
            adapter: "gitlab" | "stub"
            adapter_params: dict
            sqlite_path: str
            alerts: "log" | "email"
            max_history: int = 100
        """
        kw = dict(kwargs or {})

        kind = str(kw.get("kind") or "").strip().lower()
        if kind not in RULES:
            raise ConfigError(f"'kind' must be one of {sorted(RULES)} (got {kind!r}).")
        rule = RULES[kind]

        params = kw.get("adapter_params") or {}
        if not isinstance(params, dict):
            raise ConfigError("'adapter_params' must be an object.")

        try:
            raw_history = kw.get("max_history")
            max_history = DEFAULT_MAX_ENTRIES if raw_history in (None, "") else int(raw_history)
        except (TypeError, ValueError) as e:
            raise ConfigError("'max_history' must be an integer.") from e

        settings = cls(
            kind=kind,
            state_filter=str(kw.get("state_filter") or rule.default_filter).strip().lower(),
            gitlab_url=str(kw.get("gitlab_url") or DEFAULT_URL).strip().rstrip("/"),
            gitlab_token_env=str(kw.get("gitlab_token_env") or "").strip(),
            adapter=str(kw.get("adapter") or "gitlab").strip().lower(),
            adapter_params=dict(params),
            sqlite_path=str(kw.get("sqlite_path") or DEFAULT_STATE_PATH),
            alerts=str(kw.get("alerts") or "").strip() or None,
            max_history=max_history,
        )
        _validate_settings(settings)
        return settings

    def adapter_kwargs(self) -> dict[str, Any]:
        out = dict(self.adapter_params)
        if self.adapter == "gitlab":
            out.setdefault("url", self.gitlab_url)
            out.setdefault("token", self.gitlab_token_env)
        return out


def _validate_settings(s: Settings) -> None:
    rule = RULES[s.kind]
    if s.state_filter not in rule.filters:
        raise ConfigError(f"'state_filter' for {s.kind} must be one of {list(rule.filters)} (got {s.state_filter!r}).")
    if s.adapter == "gitlab" and not s.gitlab_token_env:
        raise ConfigError("Missing GitLab token. Set 'gitlab_token_env' to the name of a populated env var.")
    if s.max_history <= 0:
        raise ConfigError("'max_history' must be >= 1.")
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
