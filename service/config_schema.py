# service/config_schema.py
"""
Service configuration: one JSON or YAML file.

    timezone: "UTC"
    state_path: /app/local/state/devwatch.db
    alerts: log | email
    gitlab:  {url: https://gitlab.com, token_env: GITLAB_TOKEN}
    github:  {token_env: GITHUB_TOKEN}
    polling: {merge_requests: 60, issues: 120, pipelines: 30}   # seconds
    jobs:
      - id: weekly-awesome
        module: modules.awesome_scan
        trigger: {cron: "0 6 * * mon"}
        kwargs: {source_url: ..., save_as: ...}

Every `polling` entry becomes an interval job `poll-<kind>` running
`modules.gitlab_watch`. Shared settings (state_path, alerts, gitlab, github)
are injected into job kwargs unless the job sets them itself.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import yaml

from service.store import DEFAULT_STATE_PATH

logger = logging.getLogger(__name__)

POLL_MODULE = "modules.gitlab_watch"
SCAN_MODULE = "modules.awesome_scan"
POLL_KINDS = ("merge_requests", "issues", "pipelines")

_TRIGGER_FIELDS = ("cron", "interval", "date")
_EMAIL_FIELDS = ("email_to", "email_cc", "email_bcc")


class ConfigError(ValueError):
    """Raised when the config is invalid."""


# ---- Public API --------------------------------------------------------------


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load and normalize the service configuration.

    Resolution order: explicit `path`, then $CONFIG_PATH, then an empty config.
    The result always has `jobs` (polling entries already expanded), `timezone`,
    `state_path`, `alerts`, `gitlab` and `github`.
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if resolved_path:
        cfg = _read_any(resolved_path)
    else:
        logger.info("CONFIG_PATH not provided; using empty default config.")
        cfg = {}
    _apply_top_level_defaults(cfg)
    cfg["jobs"] = [_normalize_job(job, idx, cfg) for idx, job in enumerate(cfg["jobs"])]
    cfg["jobs"].extend(_polling_jobs(cfg))
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """Raise ConfigError on the first problem found. Expects load_config() output."""
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")
    if not isinstance(cfg.get("timezone"), str):
        raise ConfigError("'timezone' must be a string if provided.")
    if cfg.get("alerts") not in (None, "log", "email"):
        raise ConfigError("'alerts' must be 'log' or 'email'.")

    jobs = cfg.get("jobs")
    if not isinstance(jobs, list):
        raise ConfigError("'jobs' must be a list.")

    seen_ids: set[str] = set()
    for job in jobs:
        job_id = job["id"]
        if job_id in seen_ids:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        seen_ids.add(job_id)

        module = job.get("module")
        if not isinstance(module, str) or not module.strip():
            raise ConfigError(f"Job '{job_id}': 'module' is required and must be a non-empty string.")

        trigger = job.get("trigger")
        if not isinstance(trigger, dict):
            raise ConfigError(f"Job '{job_id}': 'trigger' must be an object.")
        present = [k for k in _TRIGGER_FIELDS if k in trigger]
        if len(present) != 1:
            raise ConfigError(f"Job '{job_id}': exactly one trigger required among {', '.join(_TRIGGER_FIELDS)}.")
        if "interval" in trigger:
            _validate_interval(trigger["interval"], job_id)
        elif "cron" in trigger and not isinstance(trigger["cron"], (str, dict)):
            raise ConfigError(f"Job '{job_id}': cron must be a crontab string or an object.")
        elif "date" in trigger and not isinstance(trigger["date"], (str, int, float, dict)):
            raise ConfigError(f"Job '{job_id}': date must be an ISO-8601 string, epoch seconds or an object.")

        if not isinstance(job.get("kwargs", {}), dict):
            raise ConfigError(f"Job '{job_id}': 'kwargs' must be a dict if provided.")
        for opt_str in ("subject", "summary"):
            if opt_str in job and not isinstance(job[opt_str], str):
                raise ConfigError(f"Job '{job_id}': '{opt_str}' must be a string if provided.")


# ---- Normalization -----------------------------------------------------------


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    jobs = cfg.get("jobs")
    if jobs is None:
        cfg["jobs"] = []
    elif not isinstance(jobs, list):
        raise ConfigError("'jobs' must be a list.")

    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    cfg["state_path"] = str(cfg.get("state_path") or os.environ.get("STATE_PATH") or DEFAULT_STATE_PATH)
    alerts = cfg.get("alerts")
    cfg["alerts"] = str(alerts).strip().lower() if alerts else None

    for section, defaults in (
        ("gitlab", {"url": "https://gitlab.com", "token_env": "GITLAB_TOKEN"}),
        ("github", {"token_env": "GITHUB_TOKEN"}),
    ):
        raw = cfg.get(section) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"'{section}' must be an object.")
        cfg[section] = {**defaults, **raw}

    polling = cfg.get("polling") or {}
    if not isinstance(polling, dict):
        raise ConfigError("'polling' must be an object of {kind: seconds}.")
    cfg["polling"] = polling


def _normalize_job(job: Any, idx: int, cfg: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(job, dict):
        raise ConfigError(f"Job at index {idx} must be an object/dict.")
    out = dict(job)
    out["id"] = _derive_job_id(out, idx)
    job_id = out["id"]

    # Allow the trigger keys at top level as shorthand for trigger: {...}.
    top_level = [k for k in _TRIGGER_FIELDS if k in out]
    if top_level:
        if "trigger" in out:
            raise ConfigError(f"Job '{job_id}': do not mix top-level triggers {top_level} with nested 'trigger'.")
        out["trigger"] = {k: out.pop(k) for k in top_level}

    # email_*_env names an env var holding a comma-separated address list
    for f in _EMAIL_FIELDS:
        env_key = f"{f}_env"
        if env_key in out:
            raw = out.pop(env_key)
            if isinstance(raw, str):
                out[f] = [e.strip() for e in os.getenv(raw.strip(), "").split(",") if e.strip()]
        if f in out:
            out[f] = _as_str_list(out[f], field=f, job_id=job_id)

    for b in ("coalesce", "send_email"):
        if b in out:
            out[b] = _to_bool(out[b], field=b, job_id=job_id)
    for n, allow_zero in (("timeout_sec", True), ("max_instances", False), ("misfire_grace_time", True)):
        if n in out:
            out[n] = _to_int(out[n], field=n, job_id=job_id, allow_zero=allow_zero)

    kwargs = out.get("kwargs")
    if kwargs is None:
        kwargs = {}
    if not isinstance(kwargs, dict):
        raise ConfigError(f"Job '{job_id}': 'kwargs' must be a dict if provided.")
    out["kwargs"] = _shared_kwargs(out.get("module"), cfg) | kwargs
    return out


def _polling_jobs(cfg: dict[str, Any]) -> list[dict[str, Any]]:
    jobs: list[dict[str, Any]] = []
    for kind, seconds in cfg["polling"].items():
        if kind not in POLL_KINDS:
            raise ConfigError(f"'polling' has unknown kind {kind!r}; expected one of {list(POLL_KINDS)}.")
        job_id = f"poll-{kind}"
        secs = _to_int(seconds, field=f"polling.{kind}", job_id=job_id, allow_zero=False)
        jobs.append({
            "id": job_id,
            "module": POLL_MODULE,
            "trigger": {"interval": {"seconds": secs}},
            "send_email": False,
            "summary": f"Poll GitLab {kind.replace('_', ' ')} every {secs}s",
            "kwargs": _shared_kwargs(POLL_MODULE, cfg) | {"kind": kind},
        })
    return jobs


def _shared_kwargs(module: Any, cfg: dict[str, Any]) -> dict[str, Any]:
    shared: dict[str, Any] = {"sqlite_path": cfg["state_path"]}
    if cfg.get("alerts"):
        shared["alerts"] = cfg["alerts"]
    if module == POLL_MODULE:
        shared["gitlab_url"] = cfg["gitlab"]["url"]
        shared["gitlab_token_env"] = cfg["gitlab"]["token_env"]
    elif module == SCAN_MODULE:
        shared["github_token_env"] = cfg["github"]["token_env"]
    return shared


# ---- Field helpers -----------------------------------------------------------


def _derive_job_id(job: dict[str, Any], idx: int) -> str:
    # id | name | module -> id
    for key in ("id", "name", "module"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def _validate_interval(spec: Any, job_id: str) -> None:
    if isinstance(spec, (int, str)) and not isinstance(spec, bool):
        _to_int(spec, field="interval", job_id=job_id, allow_zero=False)
        return
    if not isinstance(spec, dict):
        raise ConfigError(f"Job '{job_id}': interval must be seconds or an object of time kwargs.")
    for k, v in spec.items():
        if k in ("timezone", "start_date", "end_date"):
            continue
        _to_int(v, field=f"interval.{k}", job_id=job_id, allow_zero=True)


def _as_str_list(value: Any, *, field: str, job_id: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    if isinstance(value, list):
        out: list[str] = []
        for i, item in enumerate(value):
            if not isinstance(item, str) or not item.strip():
                raise ConfigError(f"Job '{job_id}': {field}[{i}] must be a non-empty string.")
            out.append(item.strip())
        return out
    raise ConfigError(f"Job '{job_id}': '{field}' must be a string or list of strings.")


def _to_bool(value: Any, *, field: str, job_id: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Job '{job_id}': '{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, job_id: str, allow_zero: bool) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.")
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"Job '{job_id}': '{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if path.lower().endswith((".yml", ".yaml")):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping/object.")
    return data
