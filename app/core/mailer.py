from __future__ import annotations

import logging
import smtplib
import time
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app
from markupsafe import Markup

logger = logging.getLogger(__name__)

PROVIDER_PRESETS: dict[str, dict[str, object]] = {
    "gmail": {"MAIL_SERVER": "smtp.gmail.com", "MAIL_PORT": 465, "MAIL_USE_SSL": True},
    "office365": {"MAIL_SERVER": "smtp.office365.com", "MAIL_PORT": 587, "MAIL_USE_SSL": False},
}
RETRY_DELAYS_SECONDS = (1, 3, 8)


@dataclass
class EmailResult:
    success: bool
    details: str | None = None


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str


def mail_outbox() -> list[SentEmail]:
    """Messages recorded while ``MAIL_SUPPRESS_SEND`` is on."""
    return current_app.extensions.setdefault("mail_outbox", [])


def _smtp_settings() -> dict[str, object]:
    config = current_app.config
    settings = {
        "MAIL_SERVER": config["MAIL_SERVER"],
        "MAIL_PORT": config["MAIL_PORT"],
        "MAIL_USE_SSL": config["MAIL_USE_SSL"],
    }
    settings.update(PROVIDER_PRESETS.get((config.get("MAIL_PROVIDER") or "").lower(), {}))
    return settings


def _build_message(sender: str, to: str, subject: str, html: str) -> MIMEMultipart:
    message = MIMEMultipart("alternative")
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.attach(MIMEText(Markup(html).striptags(), "plain", "utf-8"))
    message.attach(MIMEText(html, "html", "utf-8"))
    return message


def _deliver(message: MIMEMultipart, to: str) -> None:
    config = current_app.config
    settings = _smtp_settings()
    timeout = config["MAIL_TIMEOUT_SECONDS"]
    if settings["MAIL_USE_SSL"]:
        server = smtplib.SMTP_SSL(settings["MAIL_SERVER"], settings["MAIL_PORT"], timeout=timeout)
    else:
        server = smtplib.SMTP(settings["MAIL_SERVER"], settings["MAIL_PORT"], timeout=timeout)
    try:
        if not settings["MAIL_USE_SSL"]:
            server.starttls()
        if config["MAIL_USERNAME"]:
            server.login(config["MAIL_USERNAME"], config["MAIL_PASSWORD"])
        server.sendmail(message["From"], [to], message.as_string())
    finally:
        server.quit()


def send_email(to: str, subject: str, html: str) -> EmailResult:
    to = (to or "").strip()
    if not to:
        return EmailResult(False, "Missing recipient")
    config = current_app.config
    if config.get("MAIL_SUPPRESS_SEND"):
        mail_outbox().append(SentEmail(to=to, subject=subject, html=html))
        logger.info("Email to %s recorded (sending suppressed): %s", to, subject)
        return EmailResult(True, "suppressed")

    message = _build_message(config["MAIL_DEFAULT_SENDER"], to, subject, html)
    attempts = max(int(config.get("MAIL_SEND_RETRIES", 0)), 0) + 1
    last_error = ""
    for attempt in range(attempts):
        try:
            _deliver(message, to)
            logger.info("Email sent to %s: %s", to, subject)
            return EmailResult(True)
        except UnicodeError as exc:
            # smtplib speaks ASCII only; retrying cannot help
            logger.error("Email to %s cannot be encoded for SMTP: %s", to, exc)
            return EmailResult(False, f"{type(exc).__name__}: {exc}")
        except (smtplib.SMTPException, OSError) as exc:
            last_error = f"{type(exc).__name__}: {exc}"
            logger.warning("Email to %s failed (attempt %s/%s): %s", to, attempt + 1, attempts, last_error)
            if attempt + 1 < attempts:
                time.sleep(RETRY_DELAYS_SECONDS[min(attempt, len(RETRY_DELAYS_SECONDS) - 1)])
    logger.error("Giving up on email to %s: %s", to, last_error)
    return EmailResult(False, last_error)
