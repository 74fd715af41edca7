# service/emailer.py
from __future__ import annotations

import os
import smtplib
import ssl
from collections.abc import Iterable
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

# ---- Errors -----------------------------------------------------------------


class EmailSendError(RuntimeError):
    """Raised when an email cannot be delivered."""


# ---- Env / Settings ----------------------------------------------------------


def _getenv_any(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v != "":
            return v
    return default


def _resolve_smtp_settings() -> dict:
    """
    SMTP settings from the environment.

      SMTP_HOST / SMTP_PORT             relay (default 127.0.0.1:1025)
      SMTP_USERNAME / SMTP_PASSWORD     login
      SMTP_USE_SSL = "true" | "false"   implicit TLS
      SMTP_STARTTLS = "true" | "false" | "auto"
      SMTP_FROM                         sender (defaults to the username)
    """
    host = _getenv_any("SMTP_HOST", default="127.0.0.1")
    raw_port = _getenv_any("SMTP_PORT", default="1025") or "1025"
    try:
        port = int(raw_port)
    except ValueError as e:
        raise EmailSendError(f"SMTP_PORT must be an integer (got {raw_port!r}).") from e
    username = _getenv_any("SMTP_USERNAME")
    password = _getenv_any("SMTP_PASSWORD")

    use_ssl = (_getenv_any("SMTP_USE_SSL", default="false") or "false").strip().lower() == "true"
    starttls = (_getenv_any("SMTP_STARTTLS", default="auto") or "auto").strip().lower()
    if use_ssl:
        starttls = "false"

    return {
        "host": host,
        "port": port,
        "username": username,
        "password": password,
        "use_ssl": use_ssl,
        "starttls": starttls,
        "default_from_addr": _getenv_any("SMTP_FROM", default=username or "") or "",
    }


def default_recipients() -> list[str]:
    """ALERTS_EMAIL_TO, comma-separated."""
    return [a.strip() for a in (_getenv_any("ALERTS_EMAIL_TO", default="") or "").split(",") if a.strip()]


# ---- Helpers ----------------------------------------------------------------


def _as_list(values: Iterable[str] | str | None) -> list[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    return [v for v in (s.strip() for s in values if isinstance(s, str)) if v]


def _should_starttls(port: int, starttls_setting: str) -> bool:
    if starttls_setting == "true":
        return True
    if starttls_setting == "false":
        return False
    return port not in (25, 1025, 2525)


def _build_message(*, subject: str, html: str, to: list[str], cc: list[str], from_addr: str) -> EmailMessage:
    if not subject or not subject.strip():
        raise EmailSendError("Missing subject.")
    if not html or not html.strip():
        raise EmailSendError("Missing HTML body.")

    msg = EmailMessage()
    msg["From"] = from_addr
    if to:
        msg["To"] = ", ".join(to)
    if cc:
        msg["Cc"] = ", ".join(cc)
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()

    msg.set_content("This message requires an HTML-capable client.")
    msg.add_alternative(html, subtype="html", charset="utf-8")
    return msg


def _send_via_smtp(msg: EmailMessage, *, rcpt_to: list[str], settings: dict) -> None:
    host = settings["host"]
    port = settings["port"]
    use_ssl = settings["use_ssl"]
    context = ssl.create_default_context()

    try:
        server = smtplib.SMTP_SSL(host, port, context=context) if use_ssl else smtplib.SMTP(host, port)
        with server:
            server.ehlo()
            if not use_ssl and _should_starttls(port, settings["starttls"]):
                server.starttls(context=context)
                server.ehlo()
            if settings["username"] and settings["password"]:
                server.login(settings["username"], settings["password"])
            server.send_message(msg, to_addrs=rcpt_to)
    except Exception as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


# ---- Public API --------------------------------------------------------------


def send_html(
    *,
    subject: str,
    html: str,
    to: Iterable[str] | str | None,
    cc: Iterable[str] | None = None,
    bcc: Iterable[str] | None = None,
) -> str:
    """
    Send an HTML email.

    Returns:
        The generated Message-ID.

    Raises:
        EmailSendError on any failure (validation, connection, auth, SMTP).
    """
    settings = _resolve_smtp_settings()
    to_l = _as_list(to)
    cc_l = _as_list(cc)
    bcc_l = _as_list(bcc)

    from_addr = settings["default_from_addr"].strip()
    if not from_addr:
        raise EmailSendError("No from address resolved. Set SMTP_FROM or SMTP_USERNAME.")

    rcpt_to = [*to_l, *cc_l, *bcc_l]
    if not rcpt_to:
        raise EmailSendError("No recipients (to/cc/bcc).")

    msg = _build_message(subject=subject, html=html, to=to_l, cc=cc_l, from_addr=from_addr)
    _send_via_smtp(msg, rcpt_to=rcpt_to, settings=settings)
    return str(msg["Message-ID"])
