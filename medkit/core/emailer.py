# FILE: medkit/core/emailer.py
from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional, Protocol

from medkit.core.config import settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def __call__(self,
                 to_email: str,
                 subject: str,
                 body: str,
                 timeout: Optional[float] = None) -> None:
        ...


def _get_from_email() -> str:
    """
    Decide FROM email:
    - Prefer settings.SMTP_FROM
    - Fallback to settings.SMTP_USER
    """
    from_email = settings.SMTP_FROM or settings.SMTP_USER
    if not from_email:
        raise RuntimeError(
            "No FROM email configured. Set SMTP_FROM or SMTP_USER in settings."
        )
    return from_email


def _build_message(to_email: str, subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = _get_from_email()
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    return msg


def send_email(to_email: str,
               subject: str,
               body: str,
               timeout: Optional[float] = None) -> None:
    """
    Send a plain-text email synchronously.

    Returns on success; any SMTP/socket problem is raised to the caller
    (smtplib.SMTPException, OSError, RuntimeError for missing config).
    `timeout` bounds connect and every socket operation.
    """
    if not to_email:
        raise ValueError("send_email: recipient is required")

    host = settings.SMTP_HOST
    port = int(settings.SMTP_PORT)
    user = settings.SMTP_USER
    password = settings.SMTP_PASSWORD

    if not host:
        raise RuntimeError("SMTP_HOST is not configured")

    msg = _build_message(to_email, subject, body)
    smtp_timeout = timeout if timeout is not None else settings.ALERT_SEND_TIMEOUT_SECONDS

    with smtplib.SMTP(host, port, timeout=smtp_timeout) as server:
        if settings.SMTP_TLS:
            server.starttls(context=ssl.create_default_context())
        if user and password:
            server.login(user, password)
        server.send_message(msg)

    logger.info("Email '%s' sent to %s", subject, to_email)
