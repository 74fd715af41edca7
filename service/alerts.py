# service/alerts.py
"""
Alert dispatchers: the "show title + body to the user" capability.

Every dispatcher exposes the same permission-gated contract:

    has_permission() -> bool
    request_permission() -> bool
    show(title, body)            # raises DeliveryFailed

Built-ins:
    "log"    writes the alert to the 'devwatch.alerts' logger (always permitted)
    "email"  sends a one-paragraph HTML mail through service.emailer
"""

from __future__ import annotations

import html
import logging
import os
from abc import ABC, abstractmethod

from . import emailer
from .errors import DeliveryFailed

LOG = logging.getLogger(__name__)


class AlertDispatcher(ABC):
    name: str = ""

    @abstractmethod
    def has_permission(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def request_permission(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def show(self, title: str, body: str) -> None:
        raise NotImplementedError


class LogAlertDispatcher(AlertDispatcher):
    """Alerts end up in the process log; useful headless and in tests."""

    name = "log"

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger("devwatch.alerts")

    def has_permission(self) -> bool:
        return True

    def request_permission(self) -> bool:
        return True

    def show(self, title: str, body: str) -> None:
        self._log.warning("ALERT %s: %s", title, body)


class EmailAlertDispatcher(AlertDispatcher):
    """
    Deliver alerts by mail.

    Permission means "there is somewhere to send it": at least one recipient
    (explicit or ALERTS_EMAIL_TO) and dry-run disabled. request_permission()
    re-reads the environment, so exporting ALERTS_EMAIL_TO grants it.
    """

    name = "email"

    def __init__(self, to: list[str] | None = None) -> None:
        self._explicit_to = list(to or [])
        self._to = self._resolve_recipients()

    def _resolve_recipients(self) -> list[str]:
        return self._explicit_to or emailer.default_recipients()

    def _dry_run(self) -> bool:
        return (os.getenv("SCHEDULED_MODULES_DRY_RUN", "") or "").strip().lower() in {"1", "true", "yes", "on"}

    def has_permission(self) -> bool:
        return bool(self._to) and not self._dry_run()

    def request_permission(self) -> bool:
        self._to = self._resolve_recipients()
        return self.has_permission()

    def show(self, title: str, body: str) -> None:
        try:
            emailer.send_html(
                subject=f"[devwatch] {title}",
                html=f"<p>{html.escape(body)}</p>",
                to=self._to,
            )
        except emailer.EmailSendError as e:
            raise DeliveryFailed(str(e)) from e


_DISPATCHERS: dict[str, type[AlertDispatcher]] = {
    LogAlertDispatcher.name: LogAlertDispatcher,
    EmailAlertDispatcher.name: EmailAlertDispatcher,
}


def build_dispatcher(name: str | None = None) -> AlertDispatcher:
    """
    Instantiate a dispatcher by name (default from ALERTS_DISPATCHER, then "log").
    Unknown names fall back to the log dispatcher with a warning.
    """
    key = (name or os.getenv("ALERTS_DISPATCHER") or "log").strip().lower()
    cls = _DISPATCHERS.get(key)
    if cls is None:
        LOG.warning("Unknown alert dispatcher %r; using 'log'", key)
        cls = LogAlertDispatcher
    return cls()
