from __future__ import annotations

import re
from datetime import timedelta
from html import unescape
from urllib.parse import parse_qs, urlparse

import pytest

from app.checkin import scheduler as check_in_scheduler
from app.checkin.errors import CheckInRunInProgress
from app.checkin.scheduler import JOB_ID, run_scheduled_check_in, send_weekly_check_in_emails
from app.checkin.tokens import verify_check_in_token
from app.core.extensions import db, scheduler
from app.core.mailer import EmailResult
from app.core.models import Beneficiary, ContactStatus, ResponderRole, User, as_utc, utcnow


def _links(html: str) -> list[str]:
    return [unescape(href) for href in re.findall(r'href="([^"]+)"', html) if "/api/check-in/" in href]


def _failing_for(monkeypatch, *addresses: str) -> None:
    real_deliver = check_in_scheduler.deliver

    def fake_deliver(message):
        if message.to in addresses:
            return EmailResult(False, "SMTPServerDisconnected: boom")
        return real_deliver(message)

    monkeypatch.setattr(check_in_scheduler, "deliver", fake_deliver)


def test_due_user_and_verified_contacts_are_emailed(app, outbox, demo_user):
    with app.app_context():
        now = utcnow().replace(microsecond=0)
        result = send_weekly_check_in_emails(now)

        assert result.users_processed == 1
        assert result.emails_sent == 3
        assert result.emails_failed == 0
        assert result.clocks_advanced == 1
        assert [m.to for m in outbox] == ["demo@willtank.local", "bailey@example.com", "emery@example.com"]
        assert outbox[0].subject == "WillTank Weekly Check-in"
        assert outbox[1].subject == "Check-in for Dana Demo's Will on WillTank"


def test_run_moves_clock_one_period_forward(app, demo_user):
    with app.app_context():
        now = utcnow().replace(second=42, microsecond=123456)
        send_weekly_check_in_emails(now)

        stamp = now.replace(second=0, microsecond=0)
        user = db.session.get(User, demo_user.id)
        assert as_utc(user.last_check_in) == stamp
        assert as_utc(user.next_check_in_due) == stamp + timedelta(days=7)


def test_next_weekly_trigger_finds_user_due_again(app, outbox, demo_user):
    with app.app_context():
        now = utcnow().replace(second=0, microsecond=0)
        send_weekly_check_in_emails(now + timedelta(seconds=1, microseconds=5000))
        outbox.clear()

        result = send_weekly_check_in_emails(now + timedelta(days=7, milliseconds=3))

        assert result.users_processed == 1
        assert outbox[0].to == "demo@willtank.local"


def test_users_not_due_or_unverified_are_skipped(app, outbox, current_user_account):
    with app.app_context():
        before = as_utc(current_user_account.next_check_in_due)
        send_weekly_check_in_emails(utcnow())

        recipients = {m.to for m in outbox}
        assert "current@willtank.local" not in recipients
        assert "cameron@example.com" not in recipients
        assert "pending@willtank.local" not in recipients
        assert as_utc(db.session.get(User, current_user_account.id).next_check_in_due) == before
        pending = User.query.filter_by(email="pending@willtank.local").first()
        assert pending.next_check_in_due is None


def test_declined_and_invited_contacts_get_no_email(app, outbox):
    with app.app_context():
        send_weekly_check_in_emails(utcnow())

        recipients = {m.to for m in outbox}
        assert "blake@example.com" not in recipients
        assert "eli@example.com" not in recipients


def test_second_run_in_same_period_sends_nothing(app, outbox):
    with app.app_context():
        now = utcnow()
        send_weekly_check_in_emails(now)
        sent = len(outbox)

        result = send_weekly_check_in_emails(now + timedelta(hours=1))
        assert result.users_processed == 0
        assert len(outbox) == sent


def test_links_carry_tokens_matching_their_query(app, outbox, demo_user):
    with app.app_context():
        send_weekly_check_in_emails(utcnow())

        own_alive, own_death = _links(outbox[0].html)
        alive_query = parse_qs(urlparse(own_alive).query)
        assert urlparse(own_alive).path == "/api/check-in/confirm"
        assert alive_query["alive"] == ["true"]
        claim = verify_check_in_token(alive_query["token"][0])
        assert claim.user_id == demo_user.id
        assert claim.is_alive is True
        assert claim.responder_role == ResponderRole.USER
        assert verify_check_in_token(parse_qs(urlparse(own_death).query)["token"][0]).is_alive is False

        contact_alive, _ = _links(outbox[1].html)
        contact_query = parse_qs(urlparse(contact_alive).query)
        assert urlparse(contact_alive).path == "/api/check-in/beneficiary/confirm"
        contact_claim = verify_check_in_token(contact_query["token"][0])
        assert contact_claim.beneficiary_id == int(contact_query["beneficiaryId"][0])


def test_failed_contact_delivery_does_not_stop_the_run(app, outbox, monkeypatch):
    with app.app_context():
        _failing_for(monkeypatch, "bailey@example.com")
        result = send_weekly_check_in_emails(utcnow())

        assert result.emails_sent == 2
        assert result.emails_failed == 1
        assert [m.to for m in outbox] == ["demo@willtank.local", "emery@example.com"]


def test_clock_advances_even_when_every_delivery_fails(app, demo_user, monkeypatch):
    with app.app_context():
        monkeypatch.setattr(check_in_scheduler, "deliver", lambda message: EmailResult(False, "down"))
        now = utcnow().replace(second=0, microsecond=0)
        result = send_weekly_check_in_emails(now)

        assert result.emails_failed == 3
        assert result.clocks_advanced == 1
        assert as_utc(db.session.get(User, demo_user.id).next_check_in_due) == now + timedelta(days=7)


def test_strict_mode_keeps_clock_when_own_reminder_fails(app, demo_user, monkeypatch):
    with app.app_context():
        app.config["CHECK_IN_ADVANCE_ON_DELIVERY_FAILURE"] = False
        before = as_utc(demo_user.next_check_in_due)
        _failing_for(monkeypatch, "demo@willtank.local")
        result = send_weekly_check_in_emails(utcnow())

        assert result.users_processed == 1
        assert result.clocks_advanced == 0
        assert as_utc(db.session.get(User, demo_user.id).next_check_in_due) == before


def test_overlapping_run_is_rejected(app):
    with app.app_context():
        assert check_in_scheduler._run_lock.acquire(blocking=False)
        try:
            with pytest.raises(CheckInRunInProgress):
                send_weekly_check_in_emails(utcnow())
        finally:
            check_in_scheduler._run_lock.release()

        assert send_weekly_check_in_emails(utcnow()).users_processed == 1


def test_scheduled_job_logs_and_swallows_errors(app, monkeypatch):
    def explode(now=None):
        raise RuntimeError("database went away")

    monkeypatch.setattr(check_in_scheduler, "send_weekly_check_in_emails", explode)
    run_scheduled_check_in(app)


def test_scheduler_is_not_started_under_testing(app):
    assert scheduler.get_job(JOB_ID) is None


def test_unencodable_address_does_not_abort_the_run(app, smtp_sent, demo_user, current_user_account):
    with app.app_context():
        db.session.add(
            Beneficiary(
                user_id=demo_user.id,
                full_name="Jürgen Umlaut",
                email="jürgen@example.com",
                status=ContactStatus.VERIFIED,
            )
        )
        db.session.get(User, current_user_account.id).next_check_in_due = utcnow() - timedelta(hours=1)
        db.session.commit()

        now = utcnow().replace(second=0, microsecond=0)
        result = send_weekly_check_in_emails(now)

        assert result.users_processed == 2
        assert result.clocks_advanced == 2
        assert result.emails_failed == 1
        assert result.emails_sent == 5
        assert [to[0] for _, to in smtp_sent] == [
            "demo@willtank.local",
            "bailey@example.com",
            "emery@example.com",
            "current@willtank.local",
            "cameron@example.com",
        ]
        for user_id in (demo_user.id, current_user_account.id):
            assert as_utc(db.session.get(User, user_id).next_check_in_due) == now + timedelta(days=7)
