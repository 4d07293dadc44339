"""
auth/mailer.py -- Password reset notification delivery.

PasswordResetManager only needs something with
send_password_reset(record: PasswordReset) -> None that raises on failure.
Two implementations:

  MailgunNotifier  -- POSTs to the Mailgun messages API with requests.
                      Any transport error or non-2xx response raises
                      NotificationFailed; nothing is retried here.
  LogNotifier      -- dev mode: logs a redacted notice instead of sending.

build_notifier() picks one from Settings.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import quote

import requests

from auth.errors import NotificationFailed
from auth.models import PasswordReset
from core.config import Settings

logger = logging.getLogger("teamauth.mailer")

_SUBJECT = "Reset your password"

_TEXT_TEMPLATE = """\
Someone asked to reset the password for this account.

Open the link below within {minutes} minutes to choose a new password:

{link}

If you did not ask for this, you can ignore this email.
"""


class PasswordResetNotifier(Protocol):
    def send_password_reset(self, record: PasswordReset) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def reset_link(settings: Settings, record: PasswordReset) -> str:
    return settings.password_reset_url.format(
        email=quote(record.email, safe=""),
        token=quote(record.token, safe=""),
    )


class MailgunNotifier:
    """Sends password reset emails through the Mailgun HTTP API."""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        # Known endpoint; a long redirect chain is never legitimate here.
        self._session.max_redirects = 3

    def send_password_reset(self, record: PasswordReset) -> None:
        cfg = self._settings
        url = f"{cfg.mailgun_base_url.rstrip('/')}/{cfg.mailgun_domain}/messages"
        body = _TEXT_TEMPLATE.format(
            minutes=cfg.password_reset_ttl_seconds // 60,
            link=reset_link(cfg, record),
        )
        try:
            resp = self._session.post(
                url,
                auth=("api", cfg.mailgun_api_key),
                data={
                    "from": cfg.mailgun_sender,
                    "to": record.email,
                    "subject": _SUBJECT,
                    "text": body,
                },
                timeout=cfg.mailgun_timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Password reset email to %s failed: %s", redact_email(record.email), exc)
            raise NotificationFailed(detail=exc.__class__.__name__) from exc
        logger.info("Password reset email sent to %s", redact_email(record.email))


class LogNotifier:
    """Dev-mode notifier: records that an email would have been sent."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send_password_reset(self, record: PasswordReset) -> None:
        logger.warning(
            "Mailgun not configured -- password reset email to %s not sent",
            redact_email(record.email),
        )


def build_notifier(settings: Settings) -> PasswordResetNotifier:
    if settings.mailgun_enabled:
        return MailgunNotifier(settings)
    return LogNotifier(settings)
