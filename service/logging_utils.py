# service/logging_utils.py
"""
Structured JSONL logs: one activity file and one error file per day.

Environment (read at write time, so tests can redirect per case):
  LOG_DIR                  base directory (default /app/local/logs)
  ACTIVITY_LOG_PREFIX      default "activity"
  ERROR_LOG_PREFIX         default "error"
  ACTIVITY_LOG_MAX_BYTES   size-based rotation; <= 0 disables it
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

REDACTED = "***REDACTED***"

# Case-insensitive substring match on keys
_DEFAULT_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "smtp_",
    "authorization",
    "cookie",
}

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Persist a single structured activity record (JSON-safe).

    May raise on unrecoverable I/O/serialization errors.
    Never mutates the passed-in dict.
    """
    _write_jsonl(_log_path_for_today(_prefix("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Persist a single structured error record, parallel to the activity log."""
    _write_jsonl(_log_path_for_today(_prefix("ERROR_LOG_PREFIX", "error")), record)


def get_activity_log_path() -> str:
    return _log_path_for_today(_prefix("ACTIVITY_LOG_PREFIX", "activity"))


def get_error_log_path() -> str:
    return _log_path_for_today(_prefix("ERROR_LOG_PREFIX", "error"))


# ---- Internal helpers --------------------------------------------------------


def _prefix(env_name: str, default: str) -> str:
    return os.getenv(env_name) or default


def _log_dir() -> str:
    return os.getenv("LOG_DIR") or "/app/local/logs"


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _log_path_for_today(prefix: str) -> str:
    today = _dt.date.today().isoformat()
    return os.path.join(_log_dir(), f"{prefix}-{today}.jsonl")


def _rotate_file_if_needed(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    ts = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{ts}")


def _scrub_bearer(value: str) -> str:
    """'Bearer abc' -> 'Bearer ***REDACTED***'; other strings pass through."""
    if "bearer " not in value.lower():
        return value
    try:
        scheme, _ = value.split(" ", 1)
    except ValueError:
        return REDACTED
    return f"{scheme} {REDACTED}"


def _key_matches(name: str, patterns: Iterable[str]) -> bool:
    n = name.lower()
    return any(pat in n for pat in patterns)


def _redact_deep(value: Any, patterns: Iterable[str]) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and _key_matches(k, patterns):
                out[k] = REDACTED
            else:
                out[k] = _redact_deep(v, patterns)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v, patterns) for v in value]
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    """
    Redact, stamp host/pid, rotate by size if configured, then append a single
    line with O_APPEND. Retries once on a transient OSError.
    """
    os.makedirs(os.path.dirname(path), exist_ok=True)
    _rotate_file_if_needed(path)

    payload = _redact_deep(record, _DEFAULT_REDACT_KEYS)
    meta = payload.get("_meta") if isinstance(payload.get("_meta"), dict) else {}
    payload["_meta"] = {**meta, "host": _HOSTNAME, "pid": _PID}

    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")
    flags = os.O_CREAT | os.O_APPEND | os.O_WRONLY

    def _append_once() -> None:
        fd = os.open(path, flags, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    try:
        _append_once()
    except OSError:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        _append_once()
