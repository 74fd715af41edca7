from __future__ import annotations

import copy
import logging
from typing import Any

from service import logging_utils

# Keys that should be redacted from structured logs
_REDACT_KEYS = {
    "password",
    "token",
    "github_token",
    "gitlab_token",
    "private-token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
    "bearer",
}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow-copy record and redact obvious secret-like fields at top level.
    The service writer redacts nested structures on its own.
    """
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_token") or lk.endswith("_secret"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record through the service JSONL writer.
    Falls back to stdlib logging when the log directory is unwritable.
    """
    payload = _redact_record(record)
    try:
        logging_utils.write_activity_log(payload)
        return
    except (OSError, TypeError, ValueError):
        pass
    logging.getLogger("devwatch.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record through the service JSONL writer.
    Falls back to stdlib logging when the log directory is unwritable.
    """
    payload = _redact_record(record)
    try:
        logging_utils.write_error_log(payload)
        return
    except (OSError, TypeError, ValueError):
        pass
    logging.getLogger("devwatch.error").error(payload)
