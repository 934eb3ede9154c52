from __future__ import annotations

import atexit
import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from apscheduler.triggers.cron import CronTrigger
from flask import Flask, current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from app.checkin.emails import EmailMessage, check_in_links, deliver, weekly_check_in_email
from app.checkin.errors import CheckInRunInProgress
from app.checkin.services import advance_check_in_clock
from app.core.extensions import db, scheduler
from app.core.models import Beneficiary, ContactStatus, Executor, ResponderRole, User, utcnow

logger = logging.getLogger(__name__)

JOB_ID = "weekly_check_in"

_run_lock = threading.Lock()


@dataclass
class CheckInRunResult:
    started_at: datetime
    users_processed: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    clocks_advanced: int = 0

    def as_dict(self) -> dict[str, object]:
        return {
            "startedAt": self.started_at.isoformat(),
            "usersProcessed": self.users_processed,
            "emailsSent": self.emails_sent,
            "emailsFailed": self.emails_failed,
            "clocksAdvanced": self.clocks_advanced,
        }


def due_users(now: datetime) -> list[User]:
    return (
        User.query.filter(User.is_email_verified.is_(True))
        .filter(or_(User.next_check_in_due.is_(None), User.next_check_in_due < now))
        .order_by(User.id.asc())
        .all()
    )


def contact_messages(user: User) -> list[EmailMessage]:
    messages: list[EmailMessage] = []
    for model in (Beneficiary, Executor):
        contacts = (
            model.query.filter_by(user_id=user.id, status=ContactStatus.VERIFIED)
            .order_by(model.id.asc())
            .all()
        )
        for contact in contacts:
            alive_url, death_url = check_in_links(user.id, model.responder_role, contact.id)
            messages.append(
                weekly_check_in_email(contact.email, user.display_name, alive_url, death_url, for_contact=True)
            )
    return messages


def user_message(user: User) -> EmailMessage:
    alive_url, death_url = check_in_links(user.id, ResponderRole.USER)
    return weekly_check_in_email(user.email, user.display_name, alive_url, death_url)


def _send(message: EmailMessage, result: CheckInRunResult) -> bool:
    outcome = deliver(message)
    if outcome.success:
        result.emails_sent += 1
        return True
    result.emails_failed += 1
    logger.error("Check-in email to %s failed (%s): %s", message.to, message.subject, outcome.details)
    return False


def _process_user(user: User, now: datetime, result: CheckInRunResult) -> None:
    own_delivered = _send(user_message(user), result)
    for message in contact_messages(user):
        _send(message, result)

    if own_delivered or current_app.config["CHECK_IN_ADVANCE_ON_DELIVERY_FAILURE"]:
        advance_check_in_clock(user, now)
        result.clocks_advanced += 1
    else:
        logger.warning("Check-in clock for user %s left unchanged: reminder was not delivered", user.id)
    db.session.commit()
    result.users_processed += 1


def send_weekly_check_in_emails(now: datetime | None = None) -> CheckInRunResult:
    if not _run_lock.acquire(blocking=False):
        raise CheckInRunInProgress("A check-in run is already in progress")
    try:
        now = now or utcnow()
        # clocks are stamped on the minute the run started
        stamp = now.replace(second=0, microsecond=0)
        result = CheckInRunResult(started_at=now)
        logger.info("Sending weekly check-in emails...")
        try:
            for user in due_users(now):
                _process_user(user, stamp, result)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Weekly check-in run aborted after %s users", result.users_processed)
            raise
        logger.info(
            "Weekly check-in emails sent to %s users (delivered=%s failed=%s)",
            result.users_processed,
            result.emails_sent,
            result.emails_failed,
        )
        return result
    finally:
        _run_lock.release()


def run_scheduled_check_in(app: Flask) -> None:
    with app.app_context():
        try:
            send_weekly_check_in_emails()
        except CheckInRunInProgress:
            logger.warning("Skipping scheduled check-in: previous run still active")
        except Exception:
            logger.exception("Error sending weekly check-in emails")


def init_scheduler(app: Flask) -> None:
    if not app.config.get("CHECK_IN_SCHEDULER_ENABLED") or app.config.get("TESTING"):
        return
    scheduler.add_job(
        run_scheduled_check_in,
        CronTrigger.from_crontab(app.config["CHECK_IN_CRON"], timezone="UTC"),
        kwargs={"app": app},
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()
        atexit.register(lambda: scheduler.shutdown(wait=False))
    logger.info("Check-in scheduler initialized (%s)", app.config["CHECK_IN_CRON"])
