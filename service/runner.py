# service/runner.py
from __future__ import annotations

import importlib
import json
import logging
import os
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any

from service.emailer import EmailSendError, default_recipients, send_html
from service.logging_utils import write_activity_log
from service.store import now_iso

log = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _env_flag(name: str, default: str) -> bool:
    return str(os.getenv(name, default)).strip().lower() in _TRUE


def _wrap_html(title: str, body_inner_html: str) -> str:
    return f"""<html>
  <body style="font-family:ui-sans-serif,system-ui;line-height:1.5;margin:0;padding:8px">
    <style>
      h2,h3 {{ margin:8px 0 4px; }}
      table {{ border-collapse:collapse; }}
      th,td {{ text-align:left; padding:2px 8px; border-bottom:1px solid #eee; }}
    </style>
    <h2>{escape(title)}</h2>
    {body_inner_html}
  </body>
</html>"""


def _coerce_scalar(s: str) -> Any:
    low = s.lower()
    if low in ("true", "t", "yes", "y"):
        return True
    if low in ("false", "f", "no", "n"):
        return False
    if s.isdigit() or (s.startswith("-") and s[1:].isdigit()):
        return int(s)
    try:
        return float(s)
    except ValueError:
        return s


def _normalize_kwargs_types(kwargs: dict[str, object] | None) -> dict[str, object]:
    """
    Normalize job kwargs right before module.run(**kwargs):

      - keys ending in "_env" hold an ENV VAR NAME; the value is replaced with
        os.getenv(name, "") and left uncoerced (tokens stay strings)
      - other strings that look like JSON ({...} / [...]) are parsed
      - remaining strings get bool/number coercion
    """
    if not kwargs:
        return {}

    normalized: dict[str, object] = {}
    for k, v in kwargs.items():
        if isinstance(k, str) and k.endswith("_env") and isinstance(v, str):
            normalized[k] = os.getenv(v.strip(), "")
            continue
        if not isinstance(v, str):
            normalized[k] = v
            continue
        s = v.strip()
        if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
            try:
                normalized[k] = json.loads(s)
                continue
            except json.JSONDecodeError:
                pass
        normalized[k] = _coerce_scalar(s)
    return normalized


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """Import `module_path` and return its `run`; packages may keep it in `.main`."""
    mod = importlib.import_module(module_path)
    fn = getattr(mod, "run", None)
    if fn is None and getattr(mod, "__path__", None) is not None:
        fn = getattr(importlib.import_module(f"{module_path}.main"), "run", None)
    if not callable(fn):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return fn


@dataclass
class RunResult:
    ok: bool
    message: str
    html: str | None = None
    meta: dict[str, Any] | None = None
    subject: str | None = None
    run_id: str | None = None


def _coerce_result(value: Any) -> RunResult:
    """
    Normalize a module's return value.

      - str          -> inner HTML
      - None         -> no output
      - (str, dict)  -> inner HTML + meta ('message' / 'subject' honored)
      - dict         -> meta only (poll cycles)
    """
    if value is None:
        return RunResult(ok=True, message="OK")
    if isinstance(value, str):
        return RunResult(ok=True, message="OK", html=value)
    if isinstance(value, dict):
        return RunResult(ok=True, message=value.get("message", "OK"), meta=value, subject=value.get("subject"))
    if isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str) and isinstance(value[1], dict):
        meta = value[1]
        return RunResult(ok=True, message=meta.get("message", "OK"), html=value[0], meta=meta, subject=meta.get("subject"))
    raise TypeError("Module return must be one of: str, None, (str, dict), or dict")


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_module(
    module: str,
    kwargs: dict[str, object] | None = None,
    email_to: list[str] | None = None,
    subject: str | None = None,
    send_email: bool | None = None,
    trigger_type: str = "scheduled",
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    job_context: dict[str, object] | None = None,
    timeout_sec: int | None = None,
) -> RunResult:
    """
    Execute a module's run(**kwargs) once and record one activity line.

    `send_email=None` defers to the SEND_EMAIL env var; SCHEDULED_MODULES_DRY_RUN
    always wins. Only HTML results are mailed.

    Returns:
        RunResult with the module's html and meta and this run's id.
    Raises:
        Whatever the module raised (after the activity record is written).
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "started_at": now_iso(),
    }
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    kw = _normalize_kwargs_types(kwargs)
    run_callable = _resolve_callable(module)

    exc: BaseException | None = None
    t0 = datetime.now()
    try:
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner") as pool:
            fut = pool.submit(run_callable, **kw)
            value = fut.result(timeout=timeout_sec) if timeout_sec else fut.result()
        result = _coerce_result(value)
    except FutureTimeout:
        exc = TimeoutError(f"Module run timed out after {timeout_sec}s")
        result = RunResult(ok=False, message=str(exc), meta={"timeout_sec": timeout_sec})
    except Exception as e:
        exc = e
        result = RunResult(ok=False, message=str(e), meta={"exception_type": type(e).__name__})
    duration_ms = int((datetime.now() - t0).total_seconds() * 1000)

    effective_send = _env_flag("SEND_EMAIL", "1") if send_email is None else send_email
    if _env_flag("SCHEDULED_MODULES_DRY_RUN", ""):
        effective_send = False

    emailed = False
    email_message_id: str | None = None
    recipients = email_to or default_recipients()
    if result.html and effective_send:
        subj = result.subject or subject or f"{module} run: {'OK' if result.ok else 'FAILED'}"
        try:
            email_message_id = send_html(subject=subj, html=_wrap_html(subj, result.html), to=recipients, cc=cc, bcc=bcc)
            emailed = True
        except EmailSendError as e:
            log.error("Email send failed: %s", e)

    record: dict[str, Any] = {
        "ts": now_iso(),
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "ok": result.ok,
        "message": result.message,
        "duration_ms": duration_ms,
        "emailed": emailed,
        "email_message_id": email_message_id,
        "email_to": recipients if emailed else [],
        "context": context,
        "kwargs": kw,
        "meta": result.meta or {},
    }
    try:
        write_activity_log(record)
    except OSError as e:
        log.error("Failed to write activity record for %s: %s", module, e)

    if exc is not None:
        raise exc
    result.run_id = run_id
    return result


def run_module_once(module: str, kwargs: dict[str, object] | None = None, **options: Any) -> tuple[str | None, str]:
    """run_module() for callers that only need (html_or_none, run_id)."""
    result = run_module(module, kwargs, **options)
    return result.html, result.run_id or ""
