from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from modules._shared.utils import as_float, truthy
from service.store import DEFAULT_STATE_PATH

from .engine import DEFAULT_DELAY_SECONDS


class ConfigError(ValueError):
    """Raised when provided kwargs cannot form a valid Settings."""


@dataclass
class Settings:
    """
    Canonical configuration for one 'awesome_scan' run.

    `github_token_env` holds the RESOLVED token (the runner already replaced the
    *_env value with the environment value); it may be empty for anonymous use.
    """

    source_url: str = ""
    saved_list_id: str | None = None  # rescan an existing list (source_url taken from it)
    save_as: str | None = None  # store the result as a new saved list with this name

    adapter: str = "github"
    adapter_params: dict[str, Any] = field(default_factory=dict)
    github_token_env: str = field(default="", repr=False)

    delay_seconds: float = DEFAULT_DELAY_SECONDS
    sqlite_path: str = DEFAULT_STATE_PATH
    alerts: str | None = None  # dispatcher name; None = ALERTS_DISPATCHER or "log"

    export_path: str | None = None
    export_format: str | None = None
    skip_enrichment: bool = False

    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional unless stated otherwise):

            source_url: str          # REQUIRED unless saved_list_id is given
            saved_list_id: str
            save_as: str
            adapter: str = "github"  # or "stub"
            adapter_params: dict     # passed to the adapter constructor
            github_token_env: str    # resolved token
            delay_seconds: float = 0.1
            sqlite_path: str = "/app/local/state/devwatch.db"
            alerts: "log" | "email"
            export_path: str         # write the records as JSON/CSV
            export_format: "json" | "csv"
            skip_enrichment: bool = false
        """
        kw = dict(kwargs or {})

        params = kw.get("adapter_params") or {}
        if not isinstance(params, dict):
            raise ConfigError("'adapter_params' must be an object.")

        settings = cls(
            source_url=str(kw.get("source_url") or "").strip(),
            saved_list_id=str(kw.get("saved_list_id") or "").strip() or None,
            save_as=str(kw.get("save_as") or "").strip() or None,
            adapter=str(kw.get("adapter") or "github").strip().lower(),
            adapter_params=dict(params),
            github_token_env=str(kw.get("github_token_env") or "").strip(),
            delay_seconds=as_float(kw.get("delay_seconds"), DEFAULT_DELAY_SECONDS),
            sqlite_path=str(kw.get("sqlite_path") or DEFAULT_STATE_PATH),
            alerts=str(kw.get("alerts") or "").strip() or None,
            export_path=str(kw.get("export_path") or "").strip() or None,
            export_format=str(kw.get("export_format") or "").strip().lower() or None,
            skip_enrichment=truthy(kw.get("skip_enrichment")),
        )
        _validate_settings(settings)
        return settings

    def adapter_kwargs(self) -> dict[str, Any]:
        out = dict(self.adapter_params)
        if self.adapter == "github" and self.github_token_env:
            out.setdefault("token", self.github_token_env)
        return out


def _validate_settings(s: Settings) -> None:
    if not s.source_url and not s.saved_list_id:
        raise ConfigError("Missing 'source_url' (or 'saved_list_id' to rescan a saved list).")
    if s.delay_seconds < 0:
        raise ConfigError("'delay_seconds' must be >= 0.")
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if s.export_format and s.export_format not in ("json", "csv"):
        raise ConfigError("'export_format' must be 'json' or 'csv'.")
    if s.save_as and s.saved_list_id:
        raise ConfigError("Use either 'save_as' (new list) or 'saved_list_id' (rescan), not both.")
